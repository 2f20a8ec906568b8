"""Structured logging for the ingestion pipeline.

Every event logged while an upload is being processed carries that
upload's ``upload_id``; see :func:`upload_context`.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, TextIO

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

    from flakeboard.config import Settings

upload_id_ctx: ContextVar[str] = ContextVar("upload_id", default="")

# Fields that may hold raw Playwright error text, stack traces included
TRUNCATED_FIELDS = ("error",)
MAX_FIELD_LENGTH = 2000


def add_upload_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add upload_id to log event if set in context."""
    upload_id = upload_id_ctx.get()
    if upload_id:
        event_dict["upload_id"] = upload_id
    return event_dict


def truncate_error_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Cap error text so one failing test cannot flood the log."""
    for field in TRUNCATED_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
            event_dict[field] = value[:MAX_FIELD_LENGTH] + "..."
    return event_dict


@contextmanager
def upload_context(upload_id: str | None = None) -> Iterator[str]:
    """Tag every event logged inside the block with an upload id.

    A short random id is generated when none is given. Nested contexts
    restore the outer id on exit.
    """
    upload_id = upload_id or uuid.uuid4().hex[:12]
    token = upload_id_ctx.set(upload_id)
    try:
        yield upload_id
    finally:
        upload_id_ctx.reset(token)


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, output JSON format; otherwise, console format.
        stream: Output stream (defaults to sys.stdout).
    """
    if stream is None:
        stream = sys.stdout

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        add_upload_id,
        truncate_error_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def configure_logging_from_settings(settings: Settings, stream: TextIO | None = None) -> None:
    """Apply ``FLAKEBOARD_LOG_LEVEL`` and ``FLAKEBOARD_LOG_JSON_FORMAT``."""
    configure_logging(
        log_level=settings.log_level, json_format=settings.log_json_format, stream=stream
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a logger for a flakeboard module.

    Args:
        name: Logger name (typically module name).

    Returns:
        Lazy structlog logger; configuration is resolved on each call, so
        module-level loggers follow later configure_logging() calls. The
        name is bound as ``logger_name`` because ``logger`` is taken by
        structlog.wrap_logger().
    """
    return structlog.get_logger(name, logger_name=name)
