"""Try-on service process: wiring and ASGI app."""

from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI

from calistar.common.config import get_settings
from calistar.common.logging import configure_logging
from calistar.common.ratelimit import TokenBucket
from calistar.common.startup import log_startup_config
from calistar.common.tracing import instrument_app, setup_tracing
from calistar.services.tryon.api import create_app
from calistar.services.tryon.client import FitRoomClient
from calistar.services.tryon.pipeline import TryOnPipeline

settings = get_settings()
configure_logging(settings.service_name, settings.log_level)
setup_tracing(settings)
log_startup_config(
    settings,
    [
        "SERVICE_NAME",
        "REDIS_URL",
        "FITROOM_API_URL",
        "FITROOM_API_KEY",
        "TRYON_POLL_INTERVAL_SECONDS",
        "TRYON_POLL_MAX_ATTEMPTS",
        "TRYON_RATE_LIMIT_PER_MINUTE",
    ],
)
client = FitRoomClient(settings, service_name=settings.service_name)
pipeline = TryOnPipeline(client, settings, service_name=settings.service_name)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
limiter = TokenBucket(rdb, settings.tryon_rate_limit_per_minute, prefix="tryon")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Close outbound HTTP clients on shutdown."""

    yield
    await client.close()


app = create_app(pipeline, limiter=limiter, lifespan=lifespan, service_name=settings.service_name)
instrument_app(app)
