"""Structured logging configuration for Courier.

Provides JSON-formatted structured logging using structlog.
Supports both development (colored console) and production (JSON) modes.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

_configured = False

# Keys whose values never reach log output
REDACTED_KEYS = frozenset({"secret", "signature", "authorization"})

# httpx logs one INFO line per request, i.e. per delivery attempt
_TRANSPORT_LOGGERS = ("httpx", "httpcore")


def redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask signing secrets and signatures passed as log fields."""
    for key in event_dict.keys() & REDACTED_KEYS:
        event_dict[key] = "***"
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for Courier.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: Output format - "json" for production, "text" for development.

    Example:
        ```python
        from courier.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        logger = get_logger()
        logger.info("Scheduler started", poll_interval=1.0)
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)

    # Leaf modules log through stdlib loggers; route them to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Transport request lines only at DEBUG
    transport_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format.lower() == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name. Uses calling module name if None.

    Returns:
        A bound structlog logger.

    Example:
        ```python
        from courier.logging import get_logger

        logger = get_logger(__name__)
        logger.info("Delivery scheduled", business_id="biz_1", attempt=2)
        ```
    """
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Bind context variables to all subsequent log messages.

    Context is stored in contextvars, so each asyncio task sees its own
    copy, and tasks inherit the context of the task that created them.

    Args:
        **kwargs: Key-value pairs to bind to the logging context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the logging context.

    Args:
        *keys: Keys to remove from context.
    """
    structlog.contextvars.unbind_contextvars(*keys)


logger = get_logger("courier")
