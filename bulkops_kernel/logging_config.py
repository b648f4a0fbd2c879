"""
Structured JSON logging for the bulk operation orchestrator.

Every record is one JSON line.  Operation-scoped fields (``correlation_id``,
``operation_id``, ``operation_type``, ``actor_id``) ride on contextvars so a
worker thread started through ``contextvars.copy_context()`` inherits the
submitter's fields, and the runner binds the operation fields for the whole
job.  Anything passed through ``extra=`` lands at the top level of the line.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"bulkops_log_{name}", default=None)
    for name in ("correlation_id", "operation_id", "operation_type", "actor_id")
}


class LogContext:
    """Operation-scoped log fields, isolated per thread and per task."""

    @staticmethod
    def set(
        *,
        correlation_id: str | None = None,
        operation_id: str | None = None,
        operation_type: str | None = None,
        actor_id: str | None = None,
    ) -> None:
        """Set context fields. None leaves a field unchanged."""
        values = {
            "correlation_id": correlation_id,
            "operation_id": operation_id,
            "operation_type": operation_type,
            "actor_id": actor_id,
        }
        for name, value in values.items():
            if value is not None:
                _CONTEXT_FIELDS[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        """Non-None context fields."""
        return {
            name: var.get()
            for name, var in _CONTEXT_FIELDS.items()
            if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a block, then restore them.

        None values and unknown names are ignored.
        """
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for name, value in fields.items():
            var = _CONTEXT_FIELDS.get(name)
            if var is not None and value is not None:
                tokens.append((var, var.set(value)))
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """UUID, datetime and enums in log payloads; anything else via str()."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STDLIB_KEYS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, cls=_JSONEncoder)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        # Public attributes of typed errors (operation_id, from_status, ...)
        # are flattened as exc_<name>.
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "args":
                fields[f"exc_{name}"] = value
        return fields


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "bulkops"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the bulkops namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

# Set on the handler configure_logging() installs; its presence on the
# bulkops logger is what makes a second call a no-op.
_HANDLER_MARKER = "_bulkops_structured"
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the bulkops logger hierarchy (idempotent)."""
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    with _lock:
        if any(getattr(h, _HANDLER_MARKER, False) for h in root_logger.handlers):
            return

        root_logger.setLevel(level)
        root_logger.propagate = False

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        setattr(handler, _HANDLER_MARKER, True)
        root_logger.addHandler(handler)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    logger = logging.getLogger(_LOGGER_PREFIX)
    with _lock:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(logging.WARNING)
        logger.propagate = True
