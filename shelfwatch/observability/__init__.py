"""Observability module for logging."""

from shelfwatch.observability.logging import (
    bind_patron_context,
    clear_patron_context,
    configure_logging,
    get_logger,
)


__all__ = [
    "bind_patron_context",
    "clear_patron_context",
    "configure_logging",
    "get_logger",
]
