"""Structured logging for the compaction engine.

This module provides a logging system with:
- Structured logging using structlog
- Session-scoped context propagation through contextvars
- Console or JSON rendering, to a stream or an append-only log file
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO, Union

import structlog
from structlog.types import Processor


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_int(self) -> int:
        """Convert to logging module integer level."""
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL,
        }[self]


@dataclass
class LogContext:
    """Context merged into every log entry of the current execution scope.

    Attributes:
        session_id: Conversation session being processed.
        correlation_id: ID tying together the events of one turn.
        model: Model identifier in use for the turn.
        extra: Additional context data.
    """

    session_id: Optional[str] = None
    correlation_id: Optional[str] = None
    model: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for logging."""
        result: Dict[str, Any] = {}
        if self.session_id:
            result["session_id"] = self.session_id
        if self.correlation_id:
            result["correlation_id"] = self.correlation_id
        if self.model:
            result["model"] = self.model
        result.update(self.extra)
        return result

    def with_extra(self, **kwargs: Any) -> "LogContext":
        """Create a new context with additional data."""
        return LogContext(
            session_id=self.session_id,
            correlation_id=self.correlation_id,
            model=self.model,
            extra={**self.extra, **kwargs},
        )


_log_context: ContextVar[Optional[LogContext]] = ContextVar(
    "log_context", default=None
)


def set_context(context: Optional[LogContext]) -> None:
    """Set the current log context."""
    _log_context.set(context)


def get_context() -> Optional[LogContext]:
    """Get the current log context."""
    return _log_context.get()


def clear_context() -> None:
    """Clear the current log context."""
    _log_context.set(None)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[LogContext]:
    """Temporarily bind context fields for the enclosed block.

    Known fields (session_id, correlation_id, model) are set directly,
    anything else lands in ``extra``. The previous context is restored on exit.
    """
    current = get_context() or LogContext()
    known = {k: kwargs.pop(k) for k in ("session_id", "correlation_id", "model") if k in kwargs}
    new_context = LogContext(
        session_id=known.get("session_id", current.session_id),
        correlation_id=known.get("correlation_id", current.correlation_id),
        model=known.get("model", current.model),
        extra={**current.extra, **kwargs},
    )
    token = _log_context.set(new_context)
    try:
        yield new_context
    finally:
        _log_context.reset(token)


@dataclass
class LogConfig:
    """Configuration for the logging system.

    Attributes:
        level: Minimum log level.
        json_format: Render JSON lines instead of the colored console format.
        include_caller: Add module/function/line of the call site.
        stream: Stream the console renderer writes to (stdout when None).
        file_path: Append log lines to this file instead of the stream.
    """

    level: LogLevel = LogLevel.INFO
    json_format: bool = False
    include_caller: bool = False
    stream: Optional[TextIO] = None
    file_path: Optional[Union[str, Path]] = None


def _merge_log_context(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor adding the current LogContext fields."""
    context = get_context()
    if context:
        for key, value in context.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


def _build_processors(config: LogConfig) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        _merge_log_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


_configured = False
_log_file: Optional[TextIO] = None


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Configure structlog (and the optional log file) for the package.

    A log file opened by a previous call is closed.

    Args:
        config: Logging configuration to apply. Defaults to ``LogConfig()``.
    """
    global _configured, _log_file
    config = config or LogConfig()

    if _log_file is not None:
        _log_file.close()
        _log_file = None

    stream = config.stream
    if config.file_path is not None:
        path = Path(config.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        _log_file = path.open("a", encoding="utf-8")
        stream = _log_file

    structlog.configure(
        processors=_build_processors(config),
        wrapper_class=structlog.make_filtering_bound_logger(config.level.to_int()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )

    _configured = True


def get_logger(name: str = "session_compaction", **initial_values: Any) -> Any:
    """Get a structlog bound logger.

    Configures logging with defaults on first use if ``configure_logging``
    was never called.

    Args:
        name: Logger name (usually the module name).
        **initial_values: Key/values bound to every event of this logger.
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name, **initial_values)
