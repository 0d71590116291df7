"""
Structured JSON logging for the operations kernel.

Every record under the ``ops_kernel`` logger is written as one JSON object
per line.  Keys, in order: ``ts``, ``level``, ``logger``, ``message``, then
whichever LogContext fields are bound, then the record's ``extra`` values,
then ``exc_*`` fields when the record carries an exception.

LogContext fields:
    correlation_id  one composite write (all retry attempts share it)
    actor_id        who asked for the write or the sweep
    operation       coordinator operation or "integrity_repair"
    entity_id       the row a repair is working on
    sweep_id        one RepairEngine run

Usage::

    logger = get_logger("services.repair_engine")
    with LogContext.bind(sweep_id=str(sweep_id)):
        logger.info("repair_applied", extra={"category": "negative_inventory"})
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "ops_kernel"

CONTEXT_FIELDS = ("correlation_id", "actor_id", "operation", "entity_id", "sweep_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"ops_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Context-local log fields; safe across threads and asyncio tasks."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set the given fields.  None values and unknown names are ignored."""
        for name, value in fields.items():
            if value is not None and name in _context_vars:
                _context_vars[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (_context_vars[name], _context_vars[name].set(value))
            for name, value in fields.items()
            if value is not None and name in _context_vars
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value"):  # Enum members
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # OpsKernelError subclasses keep their context as plain attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                entry.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.x")`` -> the ``ops_kernel.services.x`` logger."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_installed_handler: logging.Handler | None = None
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``ops_kernel`` logger.

    Only the first call has any effect; the engine and the CLI both call
    this, and whichever runs first decides the handler and level.
    """
    global _configured, _installed_handler
    with _configure_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    _installed_handler = handler

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False
    kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging.  Tests only."""
    global _configured, _installed_handler
    with _configure_lock:
        _configured = False
        handler, _installed_handler = _installed_handler, None
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    if handler is not None:
        kernel_logger.removeHandler(handler)
    kernel_logger.setLevel(logging.WARNING)
