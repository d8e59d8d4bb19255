"""Structured logging utilities for the scripture index."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, TextIO

from opentelemetry import trace

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }
)

# Chatty client libraries that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """JSON formatter emitting one structured object per log line."""

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        """Format the log record as a JSON payload."""

        base: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        if self._service_name:
            base["service"] = self._service_name

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            base["trace_id"] = format(span_context.trace_id, "032x")
            base["span_id"] = format(span_context.span_id, "016x")

        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _RESERVED_ATTRS
        }
        if extra:
            base["extra"] = extra

        return json.dumps(base, default=_json_default)


def _json_default(value: Any) -> Any:
    """Fallback JSON serializer for unsupported types."""

    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def configure_logging(
    level: str = "INFO",
    service_name: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure process-wide structured logging.

    The batch job logs to stderr so CLI tables on stdout stay clean.
    """

    logging_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter(service_name=service_name))

    logging.basicConfig(level=logging_level, handlers=[handler], force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging_level, logging.WARNING))


def get_logger(name: str = "scripture_index") -> logging.Logger:
    """Return a structured logger instance."""

    return logging.getLogger(name)
