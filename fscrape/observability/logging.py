"""Structured logging with correlation ID propagation.

Usage:
    from fscrape.observability.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_output=False)

    logger = get_logger("session_manager")
    logger.info("session_started", session_id="abc")
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, WrappedLogger

from fscrape.observability.context import get_correlation_id


def add_correlation_id_processor(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds correlation_id to log entries.

    Uses "none" when no correlation ID is set in the current context.
    """
    corr_id = get_correlation_id()
    event_dict["correlation_id"] = corr_id if corr_id else "none"
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON. If False, use console format.
        add_timestamp: If True, add ISO timestamp to each log entry.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(
    component: Optional[str] = None,
    **initial_context: Any,
) -> Any:
    """Get a structured logger with optional component context.

    Args:
        component: Optional component name included in every entry
        **initial_context: Additional context bound to all entries

    Returns:
        A bound structlog logger
    """
    logger = structlog.get_logger()

    if component:
        logger = logger.bind(component=component)

    if initial_context:
        logger = logger.bind(**initial_context)

    return logger


def bind_context(**context: Any) -> None:
    """Bind context to all subsequent entries in the current async context."""
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Clear all bound context; call at batch boundaries."""
    structlog.contextvars.clear_contextvars()
