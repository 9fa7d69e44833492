"""Startup-time helpers for safe config logging."""

from calistar.common.config import Settings
from calistar.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def _safe_value(name: str, value) -> str:
    """Render one setting, redacting secret-like names."""

    if value in (None, ""):
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def redacted_config(settings: Settings, keys: list[str]) -> dict[str, str]:
    config = {"service": settings.service_name}
    for key in keys:
        config[key] = _safe_value(key, getattr(settings, key.lower(), None))
    return config


def log_startup_config(settings: Settings, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    logger.info("startup_config=%s", redacted_config(settings, keys))
