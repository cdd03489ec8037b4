"""JSON logging keyed by correlation ID.

An HTTP request, a Celery fan-out run or a single ``create_and_dispatch``
call each bind one correlation ID, so a broadcast can be followed from the
limit check through the last push notification.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from voicecast.core.tracing import get_span_id, get_trace_id

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Promoted to the top level of each JSON line so log search can key on them
ENTITY_FIELDS = ("broadcast_id", "sender_id", "recipient_id", "conversation_id", "user_id")

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "correlation_id", "asctime"}


def get_correlation_id() -> str:
    """Bound correlation ID, else the active trace ID, else a fresh one."""
    cid = correlation_id_var.get()
    if cid:
        return cid
    return get_trace_id() or str(uuid.uuid4())


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    token = correlation_id_var.set(correlation_id or str(uuid.uuid4()))
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "trace_id": get_trace_id(),
            "span_id": get_span_id(),
        }

        extra = {
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        }
        for key in ENTITY_FIELDS:
            if key in extra:
                entry[key] = extra.pop(key)
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value),
            }
            if self.include_stack_trace:
                entry["error"]["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps({k: v for k, v in entry.items() if v is not None}, default=str)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Replace root handlers with a single stdout handler.

    Args:
        level: Root log level name
        json_format: Emit JSON lines instead of plain text
        include_stack_trace: Attach formatted tracebacks to error records
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "celery.app.trace"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _log(logger: logging.Logger, level: int, message: str, exc: Optional[BaseException], extra: dict) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exc, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    _log(logger, logging.ERROR, message, exception, extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, None, extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, None, extra)
