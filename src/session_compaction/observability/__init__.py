"""Observability for the compaction engine.

Structured logging with session-scoped context propagation.

Example:
    from session_compaction.observability import get_logger, log_context

    logger = get_logger(__name__)
    with log_context(session_id="default", model="claude-sonnet-4-5"):
        logger.info("turn.started")
"""

from .logging import (
    LogConfig,
    LogContext,
    LogLevel,
    clear_context,
    configure_logging,
    get_context,
    get_logger,
    log_context,
    set_context,
)

__all__ = [
    "LogConfig",
    "LogContext",
    "LogLevel",
    "clear_context",
    "configure_logging",
    "get_context",
    "get_logger",
    "log_context",
    "set_context",
]
