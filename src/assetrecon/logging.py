"""Structured logging for Assetrecon.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names. ``setup_logging`` routes those events through one stdlib
handler (stdout, or a size-rotated file) and renders them as JSON lines or,
for local runs, as colored console output.

Three kinds of context are attached to events:

* ``correlation_id``: set per HTTP request by the request middleware
* ``job_id``: bound for the duration of a job's row loop
* anything bound with ``structlog.contextvars`` by callers

Legacy descriptions and provider error bodies can be arbitrarily long, so
string values are cut to ``MAX_VALUE_LENGTH`` characters before rendering.
Per-request chatter from the HTTP client and the SQLAlchemy engine is held at
WARNING unless debug logging is on; a backfill otherwise logs one line per
embedding call.

Example usage:
    >>> from assetrecon.config import LoggingConfig
    >>> from assetrecon.logging import setup_logging, get_logger, bind_job_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="json"))
    >>> logger = get_logger(__name__)
    >>> with bind_job_context(job_id="8c1e..."):
    ...     logger.info("job_row_processed", row_number=12)
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog

from assetrecon.config import LoggingConfig

MAX_VALUE_LENGTH = 500

# Third-party loggers that log once per request or statement
NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "uvicorn.access",
)

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "assetrecon_correlation_id", default=None
)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear, with None) the correlation id of the current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Return the correlation id of the current context, if any."""
    return _correlation_id.get()


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor: copy the current correlation id into the event."""
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def truncate_long_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor: cut string values longer than MAX_VALUE_LENGTH.

    The ``event`` name itself is never cut. Truncated values end with
    ``"...(+N chars)"``.
    """
    for key, value in event_dict.items():
        if key == "event" or not isinstance(value, str):
            continue
        overflow = len(value) - MAX_VALUE_LENGTH
        if overflow > 0:
            event_dict[key] = f"{value[:MAX_VALUE_LENGTH]}...(+{overflow} chars)"
    return event_dict


def bind_job_context(job_id: str) -> AbstractContextManager[None]:
    """Bind a reconciliation job id to all logs emitted inside the block.

    The binding is removed when the block exits, so a job run awaited
    directly by a request handler does not leak its id into later logs.

    Args:
        job_id: Job identifier to bind

    Returns:
        Context manager scoping the binding
    """
    return structlog.contextvars.bound_contextvars(job_id=job_id)


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


def _quiet_noisy_loggers(level: int) -> None:
    quiet_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def setup_logging(config: LoggingConfig) -> None:
    """Configure stdlib handlers and the structlog processor chain.

    Safe to call more than once; each call replaces the root handlers.

    Args:
        config: Logging section of AssetReconConfig
    """
    level = getattr(logging, config.level)

    handler = _build_handler(config)
    handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    _quiet_noisy_loggers(level)

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=config.file is None)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            truncate_long_values,
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
    """Return the structlog logger for a module name."""
    return structlog.get_logger(name)
