"""Tests for SchemaCache read-through caching and the Redis cache backend."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from src.app.core.redis import RedisCache
from src.app.sync.cache import SchemaCache, fields_cache_key
from src.app.sync.errors import UpstreamError

from tests.conftest import LEAD_FIELDS


class TestSchemaCache:
    """get_or_fetch and get_fields behaviour."""

    async def test_miss_loads_and_stores_with_ttl(self, cache):
        loader = AsyncMock(return_value={"fields": LEAD_FIELDS})
        result = await SchemaCache(cache).get_or_fetch("k", loader, 300)

        assert result == {"fields": LEAD_FIELDS}
        loader.assert_awaited_once()
        assert cache.values["k"] == {"fields": LEAD_FIELDS}
        assert cache.ttls["k"] == 300

    async def test_hit_skips_loader(self, cache):
        await cache.set("k", {"fields": []}, 300)
        loader = AsyncMock()
        result = await SchemaCache(cache).get_or_fetch("k", loader, 300)

        assert result == {"fields": []}
        loader.assert_not_awaited()

    async def test_loader_failure_propagates_and_is_not_cached(self, cache):
        loader = AsyncMock(side_effect=UpstreamError("boom"))
        with pytest.raises(UpstreamError):
            await SchemaCache(cache).get_or_fetch("k", loader, 300)
        assert "k" not in cache.values

    async def test_cache_read_failure_falls_back_to_loader(self):
        backend = AsyncMock()
        backend.get.side_effect = ConnectionError("redis down")
        loader = AsyncMock(return_value={"fields": []})

        result = await SchemaCache(backend).get_or_fetch("k", loader, 300)

        assert result == {"fields": []}
        loader.assert_awaited_once()

    async def test_cache_write_failure_still_returns_value(self):
        backend = AsyncMock()
        backend.get.return_value = None
        backend.set.side_effect = ConnectionError("redis down")
        loader = AsyncMock(return_value={"fields": []})

        assert await SchemaCache(backend).get_or_fetch("k", loader, 300) == {"fields": []}

    async def test_get_fields_parses_definitions(self, cache):
        loader = AsyncMock(return_value={"fields": LEAD_FIELDS})
        fields = await SchemaCache(cache).get_fields("conn-1", "Leads", loader, 300)

        assert [f.api_name for f in fields][:2] == ["Email", "First_Name"]
        assert "conn-1_fields_leads" in cache.values

    def test_fields_cache_key(self):
        assert fields_cache_key("abc", "Contacts") == "abc_fields_contacts"


class TestRedisCache:
    """RedisCache prefixes keys and JSON-encodes values."""

    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    async def test_get_decodes_json(self, redis_client):
        redis_client.get.return_value = json.dumps({"a": 1})
        cache = RedisCache(redis_client, prefix="test")

        assert await cache.get("k") == {"a": 1}
        redis_client.get.assert_awaited_once_with("test:k")

    async def test_get_missing_returns_none(self, redis_client):
        redis_client.get.return_value = None
        assert await RedisCache(redis_client).get("k") is None

    async def test_set_with_ttl(self, redis_client):
        await RedisCache(redis_client, prefix="p").set("k", [1, 2], 60)
        redis_client.set.assert_awaited_once_with("p:k", "[1, 2]", ex=60)

    async def test_add_uses_nx(self, redis_client):
        redis_client.set.return_value = None
        written = await RedisCache(redis_client, prefix="p").add("lock", {"t": 1}, 7200)

        assert written is False
        redis_client.set.assert_awaited_once_with("p:lock", '{"t": 1}', ex=7200, nx=True)

    async def test_delete(self, redis_client):
        redis_client.delete.return_value = 1
        assert await RedisCache(redis_client, prefix="p").delete("k") == 1
        redis_client.delete.assert_awaited_once_with("p:k")
