"""Structured logging for the Chapter API.

Every entry carries:
- The service name, version and environment
- The degraded-mode state resolved at startup (cache and rate-limit store)
- The request ID of the request being served, when there is one

Connection URLs passed as ``*_url`` fields have their passwords masked
before rendering.

Usage:
    from chapterapi.core.logging import configure_logging, get_logger

    configure_logging(settings)

    logger = get_logger(__name__)
    logger.info("chapters_listed", total=42, page=1)
"""

import logging
import sys
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.types import EventDict, Processor

from chapterapi.config import Settings

# Startup-resolved fields added to every entry
_runtime_context: dict[str, Any] = {}

# Libraries that log every statement or connection at DEBUG
NOISY_LOGGERS = ("uvicorn.access", "aiosqlite", "asyncio")


def bind_request_id(request_id: str) -> None:
    """Attach a request ID to all logs emitted while serving the request."""
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def bind_runtime_context(**values: Any) -> None:
    """Record startup state, e.g. ``cache_state="unavailable"``, for all entries."""
    _runtime_context.update(values)


def clear_runtime_context() -> None:
    _runtime_context.clear()


def mask_url_credentials(url: str) -> str:
    """Replace the password in a connection URL with ``****``."""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = f"{parts.username or ''}:****@{parts.hostname or ''}"
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit(parts._replace(netloc=netloc))


def mask_connection_urls(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in event_dict.items():
        if key.endswith("_url") and isinstance(value, str):
            event_dict[key] = mask_url_credentials(value)
    return event_dict


def service_context_processor(settings: Settings) -> Processor:
    """Build a processor adding service identity and runtime state."""
    service = {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env.value,
    }

    def add_service_context(
        logger: logging.Logger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        for key, value in (*service.items(), *_runtime_context.items()):
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        settings: Application settings. If None, uses default settings.
    """
    if settings is None:
        from chapterapi.config import get_settings

        settings = get_settings()

    log_level = getattr(logging, settings.log_level.value, logging.INFO)
    clear_runtime_context()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        service_context_processor(settings),
        mask_connection_urls,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if settings.use_json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Bind values to all logs within the block.

    Example:
        with log_context(client_ip="10.0.0.1"):
            logger.info("rate_limited")  # Includes client_ip
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
