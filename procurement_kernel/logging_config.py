"""
Structured logging for the procurement lifecycle engine.

Every record under the ``procurement`` logger namespace is rendered as one
line: a JSON object (default) or ``key=value`` pairs for local runs.  Both
renderings carry the same fields:

* envelope: ``ts``, ``level``, ``logger``, ``message`` (a snake_case event);
* request scope from ``LogContext`` (correlation, actor, requisition,
  purchase order, dispatch task);
* structured ``extra`` values;
* ``exc_*`` attributes of a logged ``ProcurementError``.
"""

__all__ = [
    "StructuredFormatter",
    "KeyValueFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from dataclasses import asdict, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "requisition_id",
    "purchase_order_id",
    "task_id",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"procurement_log_{name}", default=None)
    for name in _CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise TypeError(f"unknown log context field '{name}'") from None


class LogContext:
    """
    Request-scoped log fields, safe across threads and tasks.

    Values may be any object with a meaningful ``str()`` (UUIDs, actor ids);
    ``None`` leaves a field untouched.  Dispatch workers run in their own
    threads and bind ``task_id`` themselves.
    """

    FIELDS = _CONTEXT_FIELDS

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current context."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields, in declaration order, skipping unset ones."""
        return {
            name: var.get()
            for name, var in _CONTEXT_VARS.items()
            if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """``with LogContext.bind(actor_id=...):`` restores prior values on exit."""
        return _Binding(fields)


class _Binding:

    def __init__(self, fields: dict[str, Any]):
        for name in fields:
            _context_var(name)
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = _CONTEXT_VARS[name]
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _plain(value: Any) -> Any:
    """Reduce domain values (UUID, Decimal, enums, dataclasses) to JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def _record_fields(record: logging.LogRecord, formatter: logging.Formatter) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    fields.update(LogContext.get_all())
    for key, value in vars(record).items():
        if key not in _STDLIB_KEYS and key not in fields:
            fields[key] = value

    if record.exc_info and record.exc_info[1] is not None:
        exc = record.exc_info[1]
        fields["exc_type"] = type(exc).__name__
        fields["exc_message"] = str(exc)
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("args", "code"):
                fields[f"exc_{name}"] = value
        fields["traceback"] = formatter.formatException(record.exc_info)
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_record_fields(record, self), default=_plain)


class KeyValueFormatter(logging.Formatter):
    """``ts level logger message key=value ...`` for reading in a terminal."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record, self)
        traceback = fields.pop("traceback", None)
        head = " ".join(str(fields.pop(k)) for k in ("ts", "level", "logger", "message"))
        pairs = " ".join(
            f"{key}={json.dumps(value, default=_plain)}" for key, value in fields.items()
        )
        line = f"{head} {pairs}" if pairs else head
        return f"{line}\n{traceback}" if traceback else line


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": StructuredFormatter,
    "text": KeyValueFormatter,
}

# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "procurement"


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``procurement`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    fmt: str = "json",
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one handler to the ``procurement`` logger.

    Only the first call in a process takes effect; ``reset_logging`` undoes
    it for tests.  ``fmt`` is ``"json"`` or ``"text"``.
    """
    global _configured
    if fmt not in _FORMATTERS:
        raise ValueError(f"unknown log format '{fmt}'")
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(_FORMATTERS[fmt]())
    root.addHandler(h)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` to run again. Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
