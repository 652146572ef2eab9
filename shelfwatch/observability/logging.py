"""Structured logging configuration."""

import logging
import sys
from typing import TextIO

import structlog


def configure_logging(
    level: int = logging.INFO,
    output: TextIO | None = None,
    json_format: bool = True,
) -> None:
    """Configure structured logging for the application.

    Sets up structlog with timestamps, log levels and context variables,
    rendered either as JSON lines or for the console.

    Args:
        level: Logging level (default: INFO).
        output: Output stream (default: the current stderr).
        json_format: Whether to use JSON format (default: True).
    """
    stream = output if output is not None else sys.stderr

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    # Loggers are module-level; a later configure_logging call must reach them.
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=level,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a bound logger instance.

    Args:
        name: Optional logger name.

    Returns:
        Bound logger instance.
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


def bind_patron_context(patron: str) -> None:
    """Bind the patron being processed to all subsequent log messages.

    Args:
        patron: Patron name.
    """
    structlog.contextvars.bind_contextvars(patron=patron)


def clear_patron_context() -> None:
    """Clear patron context from log messages."""
    structlog.contextvars.unbind_contextvars("patron")
