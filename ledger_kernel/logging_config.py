"""
Structured JSON logging for the ledger kernel.

Every ledger logger lives under ``ledger_kernel`` (see ``get_logger``) and
writes one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "ledger_kernel.posting",
     "message": "entry_posted", "actor_id": "clerk-01", "entry_seq": 12}

Messages are stable snake_case event names; the details travel as
``extra=`` fields.  Request-scoped fields (who is acting, for which debtor,
on which entry) come from ``LogContext`` and are merged into every line
emitted while they are bound.
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
from collections.abc import Mapping
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_EMPTY: Mapping[str, str] = MappingProxyType({})

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Request-scoped log fields, safe across threads and asyncio tasks.

    The fields are held as one immutable mapping in a single ContextVar, so
    ``bind`` can restore the exact previous state on exit, including fields
    it did not touch.
    """

    FIELDS = (
        "correlation_id",
        "actor_id",
        "debtor_id",
        "entry_id",
        "residence_id",
    )

    _fields: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)

    @classmethod
    def _merged(cls, updates: Mapping[str, Any]) -> Mapping[str, str]:
        unknown = set(updates) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
        current = dict(cls._fields.get())
        current.update({k: str(v) for k, v in updates.items() if v is not None})
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields.  ``None`` values leave a field unchanged."""
        cls._fields.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(_EMPTY)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """
        Context manager form of ``set``::

            with LogContext.bind(actor_id=user, debtor_id=debtor):
                logger.info("payment_allocated", extra={...})
        """
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: Mapping[str, Any]):
        self._fields = fields
        self._token: Token | None = None

    def __enter__(self) -> type[LogContext]:
        self._token = LogContext._fields.set(LogContext._merged(self._fields))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            LogContext._fields.reset(self._token)
            self._token = None


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message and the public attributes of a LedgerKernelError."""
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
    for key, val in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code"):
            error[key] = val
    return error


class StructuredFormatter(logging.Formatter):
    """
    Formats each record as a single JSON line.

    Precedence, lowest first: ``static_fields``, the bound LogContext, then
    the record's own ``extra`` fields.  The envelope keys (``ts``, ``level``,
    ``logger``, ``message``) are never overwritten.
    """

    def __init__(self, static_fields: Mapping[str, Any] | None = None):
        super().__init__()
        self._static = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = dict(self._static)
        payload.update(LogContext.get_all())
        payload.update(
            (key, val) for key, val in vars(record).items() if key not in _RECORD_ATTRS
        )
        payload.update(
            ts=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _error_fields(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "ledger_kernel"


def get_logger(name: str) -> logging.Logger:
    """``get_logger("posting")`` -> the ``ledger_kernel.posting`` logger."""
    if name == _LOGGER_PREFIX or name.startswith(f"{_LOGGER_PREFIX}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
    static_fields: Mapping[str, Any] | None = None,
) -> bool:
    """
    Attach a JSON handler to the ``ledger_kernel`` hierarchy.

    Only the first call in a process has any effect; later calls return
    False.  ``level`` accepts a number or a name such as ``"debug"``.
    """
    global _configured
    with _lock:
        if _configured:
            return False
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter(static_fields))
    root.addHandler(target)
    return True


def reset_logging() -> None:
    """Detach every handler and allow ``configure_logging`` again (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
