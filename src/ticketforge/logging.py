"""Structured logging for Ticketforge.

Log output is produced by structlog and routed through the stdlib root
logger, so the same events can go to stdout or to a rotating file, as JSON
or as console lines.

Request and ticket context travel in structlog's contextvars:

- :func:`request_context` opens one consumer request. It binds a fresh
  ``correlation_id`` (plus any ticket fields) and unbinds them on exit.
- :func:`ticket_context` tags the events emitted while one ticket is being
  worked on with ``ticket_id`` and, optionally, the ``agent`` role.

Example usage:
    >>> from ticketforge.config import LoggingConfig
    >>> from ticketforge.logging import setup_logging, get_logger, request_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="console"))
    >>> log = get_logger(__name__)
    >>> with request_context(ticket_id="TICKET-123"):
    ...     log.info("report_task_done_received")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from ticketforge.config import LoggingConfig

CORRELATION_ID_KEY = "correlation_id"

# Third-party loggers that log every request or statement at INFO
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    """Return the correlation ID bound for the current request, if any."""
    return structlog.contextvars.get_contextvars().get(CORRELATION_ID_KEY)


@contextmanager
def request_context(
    correlation_id: str | None = None,
    **fields: str,
) -> Iterator[str]:
    """Bind a correlation ID for the duration of one consumer request.

    An ID that is already bound is reused, so nested requests (a handler
    calling another handler) share one trace.

    Args:
        correlation_id: Explicit ID to bind. Defaults to the bound one or a
            new random hex string.
        **fields: Extra context such as ``ticket_id``.

    Yields:
        The correlation ID in effect.
    """
    correlation_id = correlation_id or get_correlation_id() or new_correlation_id()
    with structlog.contextvars.bound_contextvars(**{CORRELATION_ID_KEY: correlation_id}, **fields):
        yield correlation_id


@contextmanager
def ticket_context(ticket_id: str, agent: str | None = None) -> Iterator[None]:
    """Tag events logged inside the block with a ticket (and agent role)."""
    fields = {"ticket_id": ticket_id}
    if agent is not None:
        fields["agent"] = agent
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def _build_handler(config: LoggingConfig) -> logging.Handler:
    if config.file is None:
        return logging.StreamHandler(sys.stdout)

    config.file.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=config.file,
        maxBytes=config.rotation_size_mb * 1024 * 1024,
        backupCount=config.retention_count,
        encoding="utf-8",
    )


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog and the root logger from ``config``.

    Replaces any handlers already on the root logger. Chatty third-party
    loggers in :data:`QUIET_LOGGERS` are held at WARNING unless the
    configured level is DEBUG.

    Args:
        config: Logging section of TicketforgeConfig
    """
    log_level = getattr(logging, config.level)

    handler = _build_handler(config)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    quiet_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
