"""Outbound HTTP helpers shared by the gateway and try-on clients."""

from contextlib import contextmanager
from time import perf_counter

import httpx

from calistar.common.metrics import gateway_errors_total, gateway_request_seconds

USER_AGENT = "calistar/1.0"

# Timeouts, refused connections and resets: the request outcome is unknown.
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.TransportError)


def build_async_client(
    base_url: str,
    api_key: str,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Async client with auth header, user agent and a bounded timeout."""

    return httpx.AsyncClient(
        base_url=base_url,
        headers={"X-API-KEY": api_key, "User-Agent": USER_AGENT},
        timeout=httpx.Timeout(timeout),
        transport=transport,
    )


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500


def json_body(resp: httpx.Response) -> dict | None:
    """Decode a JSON object body, returning None when it is not one."""

    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def error_message(resp: httpx.Response) -> str:
    """Best-effort human readable error from a remote error response."""

    data = json_body(resp) or {}
    for key in ("error", "message", "detail"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return f"HTTP {resp.status_code}"


@contextmanager
def observe_call(service: str, dependency: str, operation: str):
    """Record latency for one outbound call, and its failure kind if it raises."""

    start = perf_counter()
    try:
        yield
    except TRANSIENT_ERRORS as exc:
        gateway_errors_total.labels(
            service=service, dependency=dependency, operation=operation, kind=type(exc).__name__
        ).inc()
        raise
    finally:
        gateway_request_seconds.labels(service=service, dependency=dependency, operation=operation).observe(
            max(0.0, perf_counter() - start)
        )


def record_error(service: str, dependency: str, operation: str, kind: str) -> None:
    gateway_errors_total.labels(service=service, dependency=dependency, operation=operation, kind=kind).inc()
