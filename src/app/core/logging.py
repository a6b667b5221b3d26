"""Structured logging setup.

Sync components log dotted event names (``sync.fetch_locked``) with
key/value context. Hosts that drive several connectors from one process
bind ``connector_id`` / ``correlation_key`` with ``bind_sync_context`` so
every entry of that unit of work carries them, including entries from
collaborators that never see the orchestrator's bound logger.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from src.app.config import Environment, get_settings

SERVICE_NAME = "crm-sync"


def add_service_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp every entry with the service name and deployment environment."""
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", get_settings().ENVIRONMENT.value)
    return event_dict


def bind_sync_context(connector_id: str, correlation_key: str) -> None:
    """Bind the connector and correlation key for the current task."""
    structlog.contextvars.bind_contextvars(
        connector_id=connector_id,
        correlation_key=correlation_key,
    )


def clear_sync_context() -> None:
    structlog.contextvars.clear_contextvars()


def configure_structlog() -> None:
    """Configure stdlib logging and structlog renderers for the environment."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
