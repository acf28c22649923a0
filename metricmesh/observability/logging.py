"""
Structured Logging: JSON-Formatted with Context Fields

Provides:
- JSON-formatted log output
- Context propagation for request-scoped fields
- A closed Off/Info/Verbose setting for the metrics core

Designed for centralized log aggregation (ELK, Loki).
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional, TextIO


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class LogSetting(Enum):
    """
    How chatty the metrics core is.

    OFF:     nothing
    INFO:    errors and info messages
    VERBOSE: errors, info and per-operation trace messages
    """
    OFF = "off"
    INFO = "info"
    VERBOSE = "verbose"

    @classmethod
    def parse(cls, value: Any) -> LogSetting:
        """Accept a LogSetting, a bool (True means INFO) or a name."""
        if isinstance(value, LogSetting):
            return value
        if value is None or value is False:
            return cls.OFF
        if value is True:
            return cls.INFO
        text = str(value).strip().lower()
        for setting in cls:
            if setting.value == text:
                return setting
        raise ValueError(f"Unknown log setting: {value!r}")


# Context variable for request-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message", "asctime",
})


@dataclass
class LogRecord:
    """Structured log record."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {
            "@timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        data.update(self.extra)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """JSON log formatter that merges context and record extras."""

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)

        log_record = LogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            extra=extra,
        )

        return log_record.to_json()


class StructuredLogger:
    """
    Structured logger with context propagation.

    Usage:
        logger = StructuredLogger("metricmesh.writer")

        with logger.context(namespace="myspace/test"):
            logger.info("Emit metric", metric="Launches")
    """

    __slots__ = ("_logger", "_default_extra")

    def __init__(
        self,
        name: str,
        level: Optional[LogLevel] = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level.value)
        self._default_extra: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.ERROR, message, **kwargs)

    def _log(self, level: LogLevel, message: str, **kwargs: Any) -> None:
        extra = {**self._default_extra, **kwargs}
        # logging rejects extras that shadow LogRecord attributes
        safe = {
            (f"ctx_{k}" if k in _RESERVED_ATTRS else k): v
            for k, v in extra.items()
        }
        self._logger.log(level.value, message, extra=safe)

    def with_extra(self, **kwargs: Any) -> StructuredLogger:
        """Create child logger with additional default fields."""
        new_logger = StructuredLogger(self._logger.name)
        new_logger._default_extra = {**self._default_extra, **kwargs}
        return new_logger

    @staticmethod
    def context(**kwargs: Any) -> _LogContext:
        """Context manager for request-scoped fields."""
        return _LogContext(kwargs)


class _LogContext:
    """Context manager for adding fields to all logs."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        new_context = {**_log_context.get(), **self._fields}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token:
            _log_context.reset(self._token)


class MetricLog:
    """
    Front end the metrics core logs through.

    Filters by LogSetting before handing messages to an injectable
    StructuredLogger. A per-call `log=True` lifts trace messages to info.
    """

    __slots__ = ("_setting", "_logger")

    def __init__(
        self,
        setting: LogSetting = LogSetting.OFF,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._setting = setting
        self._logger = logger or StructuredLogger("metricmesh")

    @property
    def setting(self) -> LogSetting:
        return self._setting

    def error(self, message: str, **context: Any) -> None:
        if self._setting is not LogSetting.OFF:
            self._logger.error(message, **context)

    def info(self, message: str, **context: Any) -> None:
        if self._setting is not LogSetting.OFF:
            self._logger.info(message, **context)

    def trace(self, message: str, *, force: bool = False, **context: Any) -> None:
        if force:
            self.info(message, **context)
        elif self._setting is LogSetting.VERBOSE:
            self._logger.debug(message, **context)


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure root logger for structured logging.

    Args:
        level: Minimum log level
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    root = logging.getLogger()
    root.setLevel(level.value)

    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
