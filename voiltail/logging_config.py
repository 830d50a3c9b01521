"""Logging setup: JSON lines in production, plain text locally.

Every record carries the correlation id of the request that produced it.

Environment Variables:
    LOG_FORMAT: "json" for JSON lines, anything else for plain text.
    LOG_LEVEL: DEBUG, INFO, WARNING or ERROR. Defaults to INFO.
"""

import logging
import os
import sys
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

NO_CORRELATION_ID = "-"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Bind a correlation id to the current request context."""
    _correlation_id.set(correlation_id)


class CorrelationIdFilter(logging.Filter):
    """Copies the context's correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(correlation_id)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    return logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id).8s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging() -> None:
    """Replace the root handlers with one stdout handler.

    Call once at application startup.
    """
    log_format = os.getenv("LOG_FORMAT", "").lower()
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(_build_formatter(log_format))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO; provider calls are logged by voiltail.providers
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured. Format: %s, Level: %s",
        "json" if log_format == "json" else "text", logging.getLevelName(level),
    )
