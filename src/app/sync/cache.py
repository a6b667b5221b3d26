"""TTL caching of CRM field metadata on top of the distributed cache.

Cache failures never fail a sync: a read error is treated as a miss and a
write error only means the next call fetches again. Loader failures do
propagate, and a failed load is never cached.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.app.sync.clients import DistributedCache
from src.app.sync.schemas import FieldDefinition

logger = structlog.get_logger(__name__)


def fields_cache_key(connector_id: str, module: str) -> str:
    return f"{connector_id}_fields_{module.lower()}"


class SchemaCache:
    """Read-through cache for API payloads.

    Args:
        cache: Shared cache backend (Redis in production).
    """

    def __init__(self, cache: DistributedCache) -> None:
        self._cache = cache

    async def get_or_fetch(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int,
    ) -> Any:
        """Return the cached value for ``key``, loading and storing it on a miss.

        Args:
            key: Cache key.
            loader: Coroutine factory producing a JSON-serializable value.
            ttl: Expiry for the stored value, in seconds.
        """
        cached: Any = None
        try:
            cached = await self._cache.get(key)
        except Exception as exc:
            logger.error("schema_cache.read_failed", key=key, error=str(exc))

        if cached is not None:
            logger.debug("schema_cache.hit", key=key)
            return cached

        logger.debug("schema_cache.miss", key=key)
        value = await loader()

        try:
            await self._cache.set(key, value, ttl)
        except Exception as exc:
            logger.error("schema_cache.write_failed", key=key, error=str(exc))

        return value

    async def get_fields(
        self,
        connector_id: str,
        module: str,
        loader: Callable[[], Awaitable[dict[str, Any]]],
        ttl: int,
    ) -> list[FieldDefinition]:
        """Field definitions of ``module``, cached per connector.

        ``loader`` returns the CRM ``get_fields`` payload (``{"fields": [...]}``).
        """
        payload = await self.get_or_fetch(fields_cache_key(connector_id, module), loader, ttl)
        return [FieldDefinition.model_validate(f) for f in payload.get("fields", [])]
