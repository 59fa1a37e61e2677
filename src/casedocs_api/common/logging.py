"""Logging configuration and helpers for the case documents API.

The whole process logs through the standard :mod:`logging` library. The only
customization is :class:`ConsoleLogFormatter`, which renders one line per
record: timestamp, level, logger name, request correlation ID, the event name,
and any ``extra`` fields as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from casedocs_api.settings import Settings

# Request-scoped correlation ID, set/cleared by RequestContextMiddleware.
_CORRELATION_ID: ContextVar[str | None] = ContextVar(
    "casedocs_correlation_id",
    default=None,
)

# Attributes already rendered by the base format (or noise from servers).
_STANDARD_ATTRS: set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "correlation_id",
    "taskName",
    "color_message",
}

_CONFIGURED_FLAG = "_casedocs_configured"

_THIRD_PARTY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "alembic",
    "alembic.runtime.migration",
    "sqlalchemy",
)

# The Azure SDK logs every HTTP request at INFO.
_NOISY_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
)


class ConsoleLogFormatter(logging.Formatter):
    """Render log records as single-line console output.

    Example line:

        2026-10-19T09:15:02.114Z INFO  casedocs_api.features.documents.pipeline
        [cid=5d0c...] document.upload.success client_id=C-1001 byte_size=5120
    """

    _time_format = "%Y-%m-%dT%H:%M:%S"

    def __init__(self) -> None:
        fmt = "%(asctime)s %(levelname)-5s %(name)s [cid=%(correlation_id)s] %(message)s"
        super().__init__(fmt=fmt, datefmt=self._time_format)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=UTC)
        base = dt.strftime(datefmt or self._time_format)
        return f"{base}.{int(record.msecs):03d}Z"

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - std signature
        cid = getattr(record, "correlation_id", None) or _CORRELATION_ID.get() or "-"
        record.correlation_id = cid

        base = super().format(record)

        extras = [
            f"{key}={_format_extra_value(value)}"
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        ]
        if extras:
            return f"{base} " + " ".join(extras)
        return base


def setup_logging(settings: Settings) -> None:
    """Configure root logging for the API process.

    Installs one console handler on the root logger, sets the level from
    ``settings.logging_level`` (env: ``CASEDOCS_LOGGING_LEVEL``) and routes the
    uvicorn/alembic/sqlalchemy loggers through it. Calling it again only
    adjusts the level.
    """
    root_logger = logging.getLogger()
    level = getattr(logging, settings.logging_level.upper(), logging.INFO)

    if getattr(root_logger, _CONFIGURED_FLAG, False):
        root_logger.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ConsoleLogFormatter())
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in _THIRD_PARTY_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    setattr(root_logger, _CONFIGURED_FLAG, True)


def bind_request_context(correlation_id: str | None) -> None:
    """Bind a correlation ID to the logging context for the current request."""
    _CORRELATION_ID.set(correlation_id)


def clear_request_context() -> None:
    """Clear the request-scoped logging context."""
    _CORRELATION_ID.set(None)


def log_context(
    *,
    client_id: str | None = None,
    document_id: Any = None,
    storage_key: str | None = None,
    user_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a consistent ``extra`` payload for structured logs.

    Example:
        logger.info(
            "document.upload.success",
            extra=log_context(client_id=client_id, document_id=document.id),
        )
    """
    ctx: dict[str, Any] = {}
    if client_id is not None:
        ctx["client_id"] = client_id
    if document_id is not None:
        ctx["document_id"] = str(document_id)
    if storage_key is not None:
        ctx["storage_key"] = storage_key
    if user_id is not None:
        ctx["user_id"] = user_id
    ctx.update(extra)
    return ctx


def _format_extra_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str) and (not value or " " in value):
        return repr(value)
    return str(value)


__all__ = [
    "ConsoleLogFormatter",
    "bind_request_context",
    "clear_request_context",
    "log_context",
    "setup_logging",
]
