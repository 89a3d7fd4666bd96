"""
Structured JSON logging for the lifecycle kernel.

Every line is one JSON object::

    {"ts": "...", "level": "INFO", "logger": "lifecycle_kernel.services.lifecycle",
     "message": "transition_committed", "customer_id": "...", "from_status": "NEW",
     "to_status": "CERTIFIED", "seq": 2, "version": 2}

The message is a snake_case event name.  Request-scoped fields come from
LogContext; event-specific fields come from ``extra=``.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

# Fields LogContext may carry, in output order
CONTEXT_FIELDS = ("correlation_id", "customer_id", "actor_id", "trace_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"lifecycle_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name!r}") from None


class LogContext:
    """
    Request-scoped fields merged into every log line.

    Backed by contextvars, so values are local to the current thread or
    asyncio task.  Worker threads start with an empty context.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields.  None leaves a field unchanged."""
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        ctx: dict[str, str] = {}
        for name, var in _context_vars.items():
            value = var.get()
            if value is not None:
                ctx[name] = value
        return ctx

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        for name in fields:
            _context_var(name)
        tokens = [
            (_context_vars[name], _context_vars[name].set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came from ``extra=``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _jsonable(obj: Any) -> Any:
    """``json.dumps`` default hook for the kernel's value types."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        # Status sets: stable output order
        return sorted(str(_jsonable(v)) for v in obj)
    return str(obj)


def _exception_fields(exc_info) -> dict[str, Any]:
    exc = exc_info[1]
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Kernel errors keep their data in public attributes
    for key, value in vars(exc).items():
        if not key.startswith("_") and key != "code":
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "lifecycle_kernel"

_setup_lock = threading.Lock()
_configured = False


def get_logger(name: str) -> logging.Logger:
    """Logger ``lifecycle_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    levels = logging.getLevelNamesMapping()
    try:
        return levels[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``lifecycle_kernel`` logger.

    Only the first call has an effect.  The kernel's records do not
    propagate to the root logger, so host applications see them once.

    Args:
        level: Minimum level, as a number or a name such as ``"DEBUG"``.
        stream: Stream for the default handler (stderr when omitted).
        handler: Use this handler instead of a stream handler.
    """
    global _configured
    resolved = _resolve_level(level)
    with _setup_lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_ROOT_LOGGER)
    kernel_logger.setLevel(resolved)
    kernel_logger.propagate = False

    out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(out)


def reset_logging() -> None:
    """Undo configure_logging.  Tests only."""
    global _configured
    with _setup_lock:
        _configured = False
    kernel_logger = logging.getLogger(_ROOT_LOGGER)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
