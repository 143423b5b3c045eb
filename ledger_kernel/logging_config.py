"""
Structured JSON logging for the ledger kernel.

Every record is one JSON object per line:

    {"ts": ..., "level": ..., "logger": ..., "message": "movement_inserted",
     "correlation_id": ..., "document_id": ..., "ledger": "stock",
     "ledger_key": "stock:<material>:<warehouse>", ...extra fields}

Messages are snake_case event names; everything else travels in ``extra``
or in the LogContext bound by the orchestrators.  Ledger values are
rendered by the formatter itself: keys as their lock name, enums as their
value, Decimals as exact strings (never floats), UUIDs and datetimes as
text.  A record that names a ledger key also carries ``ledger``, the key's
kind, so one chain or one kind of chain can be filtered without parsing.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID

_ROOT = "ledger_kernel"

# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


class LogContext:
    """
    Request-scoped fields merged into every record.

    The context is one immutable mapping per thread / task, so ``bind``
    restores exactly what was there before, however deeply it nests.
    """

    FIELDS = frozenset({"correlation_id", "document_id", "ledger_key", "actor_id"})

    @classmethod
    def _merged(cls, fields: dict[str, Any]) -> Mapping[str, str]:
        unknown = fields.keys() - cls.FIELDS
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        merged = dict(_context.get())
        merged.update({k: _render(v) for k, v in fields.items() if v is not None})
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current context.  None is skipped."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields inside the block and restore the previous context after."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _render(value: Any) -> Any:
    """Make a ledger value JSON-safe without losing precision."""
    if hasattr(value, "lock_name"):
        return value.lock_name
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_render(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _render(v) for k, v in value.items()}
    return value


def _ledger_kind(key: Any) -> str | None:
    if isinstance(key, str) and ":" in key:
        return key.split(":", 1)[0]
    return None


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = _render(value)

        kind = _ledger_kind(payload.get("ledger_key"))
        if kind is not None:
            payload.setdefault("ledger", kind)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=str)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "traceback": self.formatException(record.exc_info),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
            # Ledger errors carry their context as public attributes.
            for name, value in vars(exc).items():
                if not name.startswith("_") and name != "args":
                    fields[f"exc_{name}"] = _render(value)
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ledger_kernel namespace, e.g. ``services.movement_ledger``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def _is_ours(handler: logging.Handler) -> bool:
    return getattr(handler, "_ledger_structured", False)


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """
    Attach one JSON handler to the ledger_kernel logger.

    Idempotent: once a handler is attached, later calls change nothing.
    """
    root = logging.getLogger(_ROOT)
    if any(_is_ours(h) for h in root.handlers):
        return root

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    target._ledger_structured = True
    root.addHandler(target)
    root.setLevel(level)
    root.propagate = False
    return root


def reset_logging() -> None:
    """Detach the JSON handler and restore defaults.  For tests."""
    root = logging.getLogger(_ROOT)
    for h in [h for h in root.handlers if _is_ours(h)]:
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
    root.propagate = True
