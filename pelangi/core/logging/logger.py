"""
Logging for the Pelangi gamification core.

Call sites use plain stdlib loggers (`get_logger(__name__)`) and pass
structured fields through `extra=`. This module wires the root logger once,
on import:

- Records go through a bounded queue to a background listener, so an XP
  grant never blocks on terminal or disk I/O. When the queue is full the
  record is dropped and counted.
- The listener writes to stdout (JSON in production or when LOG_JSON is
  set, coloured text on a terminal, plain text otherwise) and to a JSON
  file in `Config.LOGS_DIR` that rotates at midnight UTC.
- `LogContext` binds who/what fields (student, class, acting teacher,
  operation, correlation id) for everything logged inside a block. The
  binding lives in a ContextVar, so concurrent grants on one event loop
  keep separate contexts.

    async with LogContext(student_id=42, operation="award_xp"):
        logger.info("XP awarded", extra={"amount": 50})
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from typing import Any, Dict, Optional

from pelangi.core.config.config import Config

_context: ContextVar[Dict[str, Any]] = ContextVar("pelangi_log_context", default={})

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOG_FILE = "pelangi_daily.json.log"
_QUEUE_SIZE = 10_000
_INSTALLED_FLAG = "_pelangi_logging_installed"

# Context key -> LogRecord attribute. Attributes are suffixed so they never
# collide with `extra=` fields of the same name.
_CONTEXT_FIELDS = {
    "actor_id": "ctx_actor_id",
    "student_id": "ctx_student_id",
    "class_id": "ctx_class_id",
    "correlation_id": "ctx_correlation_id",
    "component": "ctx_component",
    "operation": "ctx_operation",
}

dropped_records = 0


def _level() -> int:
    return logging.getLevelName(Config.LOG_LEVEL) if Config.LOG_LEVEL else logging.INFO


def _wants_json() -> bool:
    return Config.LOG_JSON or Config.is_production()


# ============================================================================
# Filter & formatter
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        bound = _context.get()
        for key, attr in _CONTEXT_FIELDS.items():
            setattr(record, attr, bound.get(key))
        if record.ctx_component is None:
            record.ctx_component = record.name.split(".", 1)[0]
        return True


class ColoredFormatter(logging.Formatter):
    """Text format with the level name coloured by ANSI escapes."""

    _ESCAPES = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        escape = self._ESCAPES.get(record.levelname)
        if escape is None:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{escape}{plain}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


class JSONFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are nested under "extra"."""

    # LogRecord attribute -> output key
    CONTEXT_ATTRS = {
        "ctx_actor_id": "actor_id",
        "ctx_student_id": "student_id",
        "ctx_class_id": "class_id",
        "ctx_correlation_id": "correlation_id",
        "ctx_component": "component",
        "ctx_operation": "context_operation",
    }

    _BUILTIN = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", None, None))
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for attr, key in self.CONTEXT_ATTRS.items():
            value = getattr(record, attr, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in self._BUILTIN
            and key not in self.CONTEXT_ATTRS
            and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class _DroppingQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        global dropped_records
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            dropped_records += 1


_listener: Optional[QueueListener] = None


def _handlers() -> list:
    console = logging.StreamHandler(sys.stdout)
    if _wants_json():
        console.setFormatter(JSONFormatter())
    elif sys.stdout.isatty():
        console.setFormatter(ColoredFormatter(_TEXT_FORMAT, _DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(_TEXT_FORMAT, _DATE_FORMAT))
    handlers = [console]

    try:
        Config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        daily = TimedRotatingFileHandler(
            Config.LOGS_DIR / _LOG_FILE,
            when="midnight",
            backupCount=1,
            encoding="utf-8",
            utc=True,
        )
    except OSError as exc:
        sys.stderr.write(f"pelangi: file logging disabled ({exc})\n")
    else:
        daily.setFormatter(JSONFormatter())
        handlers.append(daily)

    for handler in handlers:
        handler.setLevel(_level())
    return handlers


def setup_logging() -> None:
    """Install the queue handler on the root logger. Safe to call again."""
    global _listener

    root = logging.getLogger()
    if getattr(root, _INSTALLED_FLAG, False):
        return

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(_QUEUE_SIZE)
    _listener = QueueListener(log_queue, *_handlers(), respect_handler_level=True)
    _listener.start()

    queue_handler = _DroppingQueueHandler(log_queue)
    # context must be captured on the emitting task, not on the listener thread
    queue_handler.addFilter(ContextFilter())
    root.addHandler(queue_handler)
    root.setLevel(_level())

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    setattr(root, _INSTALLED_FLAG, True)
    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"level": Config.LOG_LEVEL, "json": _wants_json(), "logs_dir": str(Config.LOGS_DIR)},
    )


def shutdown_logging() -> None:
    """Flush the queue and detach from the root logger."""
    global _listener

    root = logging.getLogger()
    if not getattr(root, _INSTALLED_FLAG, False):
        return

    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None

    for handler in [h for h in root.handlers if isinstance(h, _DroppingQueueHandler)]:
        root.removeHandler(handler)
        handler.close()
    setattr(root, _INSTALLED_FLAG, False)


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


def _stringify(fields: Dict[str, Any]) -> Dict[str, Any]:
    # ids are logged as strings so JSON consumers see one type per key
    return {
        key: str(value) if key.endswith("_id") else value
        for key, value in fields.items()
        if value is not None
    }


class LogContext:
    """
    Bind fields to every record logged inside the block (sync or async).

    A correlation id is generated when none is given.
    """

    def __init__(
        self,
        actor_id: Optional[int] = None,
        student_id: Optional[int] = None,
        class_id: Optional[int] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        self.context = _stringify(
            {
                "actor_id": actor_id,
                "student_id": student_id,
                "class_id": class_id,
                "component": component,
                "operation": operation,
                "correlation_id": correlation_id or uuid.uuid4().hex[:8],
                **extra,
            }
        )
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        self._token = _context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_context.get())


def set_log_context(**fields: Any) -> None:
    """Merge fields into the current context (None values are ignored)."""
    _context.set({**_context.get(), **_stringify(fields)})


def clear_log_context() -> None:
    _context.set({})


setup_logging()
