"""Startup-time helpers for safe config logging."""

from admitpay.common.config import CommonSettings, settings as default_settings
from admitpay.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def _safe_value(settings: CommonSettings, name: str) -> str:
    """Settings value for an env-style key, redacting secret-like names.

    Values come from the loaded settings, so keys supplied through `.env` are
    reported too.
    """

    value = getattr(settings, name.lower(), None)
    if value in (None, ""):
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return str(value)


def log_startup_config(service_name: str, keys: list[str], settings: CommonSettings | None = None) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    settings = settings or default_settings
    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_value(settings, key)
    logger.info("startup_config=%s", config)
