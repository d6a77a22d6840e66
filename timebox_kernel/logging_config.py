"""
Structured logging for the timebox packages.

Every record is rendered as one JSON object per line.  Run-scoped fields
(job name, job type, run id, trigger id) live in a ContextVar so that a
scheduler run, or a trigger firing on the poller thread, stamps every
record it produces without passing loggers around.

Usage:
    logger = get_logger("batch.scheduler")
    with LogContext.bind(job_name="nightly", run_id="a1b2"):
        logger.info("job_started", extra={"budget_seconds": 1500})
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Mapping, TextIO

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

ROOT_LOGGER = "timebox"

CONTEXT_FIELDS: tuple[str, ...] = ("job_name", "job_type", "run_id", "trigger_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("timebox_log_context", default={})


# =============================================================================
# Run context
# =============================================================================


class LogContext:
    """Run-scoped fields merged into every record.

    Only the names in CONTEXT_FIELDS are accepted; anything else is a
    programming error and raises ValueError.
    """

    @staticmethod
    def _merged(fields: Mapping[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set fields for the rest of the current context (None is ignored)."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    def bind(cls, **fields: str | None) -> _Binding:
        """Context manager setting fields on entry and restoring on exit."""
        return _Binding(cls._merged(fields))


class _Binding:
    def __init__(self, fields: dict[str, str]) -> None:
        self._fields = fields
        self._tokens: list[Any] = []

    def __enter__(self) -> type[LogContext]:
        self._tokens.append(_context.set(self._fields))
        return LogContext

    def __exit__(self, *exc_info: Any) -> None:
        _context.reset(self._tokens.pop())


# =============================================================================
# Formatter
# =============================================================================

# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _exception_fields(exc: BaseException) -> Iterator[tuple[str, Any]]:
    yield "exc_type", type(exc).__name__
    yield "exc_message", str(exc)
    code = getattr(exc, "code", None)
    if code is not None:
        yield "exc_code", code
    # typed timebox errors keep their diagnostics as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            yield f"exc_{name}", value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Key order: timestamp, level, logger, event message, run context, the
    record's ``extra`` fields, then exception details.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


# =============================================================================
# Logger factory and setup
# =============================================================================


def get_logger(name: str) -> logging.Logger:
    """Logger named ``timebox.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the ``timebox`` logger.

    Only the first call installs a handler; later calls just adjust the
    level, so every process entry point may call this unconditionally.
    """
    global _handler
    if isinstance(level, str):
        level = level.upper()

    root = logging.getLogger(ROOT_LOGGER)
    with _setup_lock:
        root.setLevel(level)
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root.addHandler(_handler)
        root.propagate = False


def reset_logging() -> None:
    """Remove the handler installed by configure_logging().  Tests only."""
    global _handler
    root = logging.getLogger(ROOT_LOGGER)
    with _setup_lock:
        if _handler is not None:
            root.removeHandler(_handler)
            _handler = None
        root.handlers.clear()
        root.setLevel(logging.NOTSET)
        root.propagate = True
