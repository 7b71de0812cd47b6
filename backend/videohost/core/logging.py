"""Structured logging keyed by upload session.

While a transfer runs, its session id is the correlation id of every log
line, so the chunk, retry and poll records of one upload can be joined
afterwards. Outside an upload a random id is minted per context.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from videohost.core.tracing import current_trace_ids

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "correlation_id",
    "taskName",
}

NOISY_LOGGERS = ("httpx", "httpcore", "celery.redirected")


def get_correlation_id() -> str:
    """Get the correlation id of the current context, minting one if unset."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = uuid.uuid4().hex
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


class StructuredFormatter(logging.Formatter):
    """Formats each record as one JSON object.

    Fields: timestamp, level, logger, message, correlation_id, trace_id and
    span_id inside a span, source, exception, and ``extra`` for any
    structured fields passed by the caller.
    """

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        trace_id, span_id = current_trace_ids()
        if trace_id:
            entry["trace_id"] = trace_id
            entry["span_id"] = span_id

        entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
            }
            if self.include_stack_trace and exc_tb is not None:
                entry["exception"]["stack_trace"] = traceback.format_exception(*record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        if extra:
            entry["extra"] = {key: _jsonable(value) for key, value in extra.items()}

        return json.dumps(entry, default=str)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamps the current correlation id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Route all logging to stdout, as JSON or as plain text lines.

    Args:
        level: Log level name
        json_format: Emit one JSON object per line
        include_stack_trace: Include formatted tracebacks in JSON output
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(logger: logging.Logger, level: int, message: str, **extra: Any) -> None:
    exception = extra.pop("exception", None)
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exception, extra=extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    """Log at INFO with the correlation id and structured ``extra`` fields."""
    _log(logger, logging.INFO, message, **extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, **extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log at ERROR, attaching ``exception`` and its traceback when given."""
    _log(logger, logging.ERROR, message, exception=exception, **extra)
