"""Structured logging for KubeFleet services.

structlog renders every event, either as one JSON object per line or as
coloured console output. Events are stamped with the service name and
environment, and keys that can hold credentials are scrubbed before any
renderer sees them.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from kubefleet.config import LogFormat, LogLevel, get_settings

# Event keys whose values must never be rendered
SECRET_KEYS = frozenset(
    {
        "credential_blob",
        "credentials",
        "kubeconfig",
        "password",
        "password_hash",
        "token",
        "authorization",
    }
)
REDACTED = "**redacted**"

# Third-party loggers that are only interesting when something is wrong
QUIET_LOGGERS = ("urllib3", "kubernetes", "aiosqlite", "uvicorn.access")


class ServiceContext:
    """Processor stamping events with the emitting service and environment."""

    def __init__(self, service_name: str | None = None):
        settings = get_settings()
        self.service = service_name or settings.app_name
        self.environment = settings.environment.value

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", self.service)
        event_dict.setdefault("environment", self.environment)
        return event_dict


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace secret-bearing values before rendering."""
    for key in event_dict.keys() & SECRET_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def _renderer(log_format: LogFormat) -> list[Processor]:
    if log_format is LogFormat.JSON:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback)]


def setup_logging(
    service_name: str | None = None,
    log_level: LogLevel | str | None = None,
    log_format: LogFormat | str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Unset arguments fall back to the ``LOG_LEVEL`` / ``LOG_FORMAT`` settings.
    """
    settings = get_settings()
    level = LogLevel(log_level or settings.log_level)
    fmt = LogFormat(log_format or settings.log_format)

    logging.basicConfig(level=getattr(logging, level.value), stream=sys.stdout, format="%(message)s")
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            ServiceContext(service_name),
            redact_secrets,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(fmt),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@contextmanager
def external_call(
    logger: structlog.stdlib.BoundLogger,
    service: str,
    operation: str,
    **context: Any,
) -> Iterator[None]:
    """Time a remote call and log its outcome.

    A failure is logged at warning level with the exception's ``code`` (or
    its type name) and re-raised.
    """
    fields = {"external_service": service, "external_operation": operation, **context}
    logger.debug("External call started", **fields)
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.warning(
            "External call failed",
            duration_ms=_elapsed_ms(started),
            error=getattr(e, "code", type(e).__name__),
            **fields,
        )
        raise
    logger.debug("External call completed", duration_ms=_elapsed_ms(started), **fields)


@contextmanager
def timed_query(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    table: str,
) -> Iterator[dict[str, Any]]:
    """Time a database statement.

    The block may set ``rows_affected`` on the yielded dict. Nothing is
    logged when the block raises; the caller reports the error.
    """
    fields: dict[str, Any] = {"db_operation": operation, "db_table": table}
    started = time.perf_counter()
    yield fields
    logger.debug("Database query executed", duration_ms=_elapsed_ms(started), **fields)
