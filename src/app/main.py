"""Process entry point for hosts running the sync engine.

``lifespan`` sets up logging and the shared Redis cache on startup and
closes the pool on shutdown. Hosts build one ``SyncOrchestrator`` per
unit of work inside it::

    async with lifespan() as cache:
        orchestrator = SyncOrchestrator(connector_id, settings, crm, cdp, cache)
        await orchestrator.fetch_records("leads", "partial")
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog

from src.app.config import get_settings
from src.app.core.logging import configure_structlog
from src.app.core.redis import RedisCache, close_redis, get_redis_cache


@asynccontextmanager
async def lifespan() -> AsyncGenerator[RedisCache, None]:
    """Configure logging, yield the shared cache, close Redis on exit."""
    settings = get_settings()
    configure_structlog()
    log = structlog.get_logger(__name__)

    cache = get_redis_cache()
    log.info("app.startup", environment=settings.ENVIRONMENT.value, key_prefix=settings.REDIS_KEY_PREFIX)
    try:
        yield cache
    finally:
        await close_redis()
        log.info("app.shutdown")
