"""Redis token bucket used to shield the try-on API quota."""

import math
from time import time

from calistar.common.errors import RateLimited


class TokenBucket:
    """Per-key token bucket (capacity = refill rate = limit per minute)."""

    def __init__(self, rdb, limit_per_minute: int, prefix: str = "tokenbucket") -> None:
        self.rdb = rdb
        self.limit_per_minute = limit_per_minute
        self.prefix = prefix

    def consume(self, key: str, now: float | None = None) -> None:
        """Take one token for `key` or raise `RateLimited` with a retry hint."""

        if self.limit_per_minute <= 0:
            return
        bucket_key = f"{self.prefix}:{key}"
        now = time() if now is None else now
        capacity = float(self.limit_per_minute)

        values = self.rdb.hmget(bucket_key, "tokens", "updated_at")
        tokens = float(values[0]) if values[0] is not None else capacity
        updated_at = float(values[1]) if values[1] is not None else now
        elapsed = max(0.0, now - updated_at)
        tokens = min(capacity, tokens + elapsed * capacity / 60.0)

        if tokens < 1.0:
            self.rdb.hset(bucket_key, mapping={"tokens": tokens, "updated_at": now})
            self.rdb.expire(bucket_key, 120)
            raise RateLimited(retry_after=max(1, math.ceil((1.0 - tokens) * 60.0 / capacity)))
        tokens -= 1.0
        self.rdb.hset(bucket_key, mapping={"tokens": tokens, "updated_at": now})
        self.rdb.expire(bucket_key, 120)
