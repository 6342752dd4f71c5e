"""Observability module for structured logging."""

from .logging import (
    ServiceContext,
    external_call,
    get_logger,
    redact_secrets,
    setup_logging,
    timed_query,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Processors
    "ServiceContext",
    "redact_secrets",
    # Timing helpers
    "external_call",
    "timed_query",
]
