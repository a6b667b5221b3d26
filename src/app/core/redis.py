"""Redis-backed distributed cache with automatic key prefixing.

Backs both the field-metadata cache and the fetch locks. Because every
connector process talks to the same Redis, a lock written here is seen by
all instances, not only the current one.

Values are stored as JSON strings so cached API payloads survive the
round-trip unchanged.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis

from src.app.config import get_settings
from src.app.sync.clients import DistributedCache

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ── Redis Cache ─────────────────────────────────────────────────────────────


class RedisCache(DistributedCache):
    """DistributedCache implementation that prefixes all keys with {prefix}:.

    Args:
        redis_client: Async Redis client (``decode_responses=True``).
        prefix: Namespace for every key written by this cache.
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "crm-sync"):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        """Generate a prefixed key: {prefix}:{key}."""
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        """Get and decode a value, or None if the key is absent."""
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a JSON-encoded value with optional TTL (seconds)."""
        await self._redis.set(self._key(key), json.dumps(value), ex=ttl)

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set the value only if the key is absent. Returns True if written."""
        written = await self._redis.set(
            self._key(key), json.dumps(value), ex=ttl, nx=True
        )
        return bool(written)

    async def delete(self, key: str) -> int:
        """Delete a key. Returns number of keys deleted."""
        return await self._redis.delete(self._key(key))


def get_redis_cache() -> RedisCache:
    """Get a RedisCache instance using the global Redis pool."""
    return RedisCache(get_redis_pool(), prefix=get_settings().REDIS_KEY_PREFIX)
