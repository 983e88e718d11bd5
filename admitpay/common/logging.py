"""Structured JSON logging with request/application context fields.

Pay links carry their bearer token in the `v` query parameter, so every record
passes through `TokenRedactionFilter` before it is formatted; access logs of
`GET /api/pay?v=...` would otherwise leak live tokens.
"""

import logging
import re
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from admitpay.common.config import settings


request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
application_id_ctx: ContextVar[str] = ContextVar("application_id", default="")

PAY_TOKEN_PATTERN = re.compile(r"([?&]v=)[0-9a-fA-F]{8,}")


def redact_pay_tokens(text: str) -> str:
    """`/api/pay?v=<64 hex>` -> `/api/pay?v=<redacted>`."""

    return PAY_TOKEN_PATTERN.sub(r"\1<redacted>", text)


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.request_id = request_id_ctx.get()
        record.application_id = application_id_ctx.get()
        return True


class TokenRedactionFilter(logging.Filter):
    """Mask pay-link tokens in the rendered message before formatting."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_pay_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging() -> None:
    """Configure root logger once per app process."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.addFilter(TokenRedactionFilter())
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(service_name)s %(request_id)s %(application_id)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # httpx logs full request URLs at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger("admitpay")
