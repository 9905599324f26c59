"""
Unit tests for the Redis-backed recency cache.

Runs against fakeredis; fault injection uses unittest.mock and the failing
clients from conftest.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from storyguard.dedup.cache import RecencyCache
from storyguard.errors import StoreUnavailable

from tests.helpers.fakes import SlowRedis
from tests.helpers.metric_delta import metric_delta


class TestRecencyCacheKeys:
    """Test string key operations."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, cache):
        await cache.put("content:abc", "payload", ttl=60)

        assert await cache.get("content:abc") == "payload"
        assert await cache.exists("content:abc") is True
        assert await cache.get("content:missing") is None
        assert await cache.exists("content:missing") is False

    @pytest.mark.asyncio
    async def test_ttl_is_applied_in_milliseconds(self, cache, redis_client):
        await cache.put("content:abc", "payload", ttl=1.5)

        pttl = await redis_client.pttl("content:abc")
        assert 0 < pttl <= 1500

    @pytest.mark.asyncio
    async def test_none_ttl_never_expires(self, cache, redis_client):
        await cache.put("content:abc", "payload", ttl=None)
        assert await redis_client.ttl("content:abc") == -1

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache):
        await cache.put("content:abc", "payload", ttl=0.1)
        await asyncio.sleep(0.25)
        assert await cache.get("content:abc") is None

    @pytest.mark.asyncio
    async def test_put_if_absent(self, cache):
        assert await cache.put_if_absent("content:abc", "first", ttl=60) is True
        assert await cache.put_if_absent("content:abc", "second", ttl=60) is False
        assert await cache.get("content:abc") == "first"

    @pytest.mark.asyncio
    async def test_get_many_preserves_order(self, cache):
        await cache.put("a", "1", ttl=60)
        await cache.put("c", "3", ttl=60)

        assert await cache.get_many(["a", "b", "c"]) == ["1", None, "3"]
        assert await cache.get_many([]) == []

    @pytest.mark.asyncio
    async def test_namespace_prefixes_keys(self, redis_client):
        cache = RecencyCache(redis_client, namespace="prod:")
        await cache.put("content:abc", "payload", ttl=60)

        assert cache.key("content:abc") == "prod:content:abc"
        assert await redis_client.get("prod:content:abc") == "payload"
        assert await redis_client.get("content:abc") is None


class TestRecencyCacheCollections:
    """Test sets, the sorted index and bounded lists."""

    @pytest.mark.asyncio
    async def test_set_membership_and_ttl_refresh(self, cache, redis_client):
        await cache.add_to_set("source:CoinDesk", "https://a", ttl=10)
        await cache.add_to_set("source:CoinDesk", "https://b", ttl=100)

        assert await cache.set_members("source:CoinDesk") == {"https://a", "https://b"}
        assert await cache.is_member("source:CoinDesk", "https://a") is True
        assert await cache.is_member("source:CoinDesk", "https://z") is False
        assert await cache.set_size("source:CoinDesk") == 2
        assert await redis_client.ttl("source:CoinDesk") > 10

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, cache, redis_client):
        await cache.add_to_set("global:articles", "fp1", ttl=None)
        assert await redis_client.ttl("global:articles") == -1

    @pytest.mark.asyncio
    async def test_index_trims_by_count(self, cache):
        for i in range(5):
            await cache.index_add("semantic:index", f"d{i}", score=1000 + i, max_entries=3)

        rows = await cache.index_range("semantic:index")
        assert [member for member, _ in rows] == ["d4", "d3", "d2"]

    @pytest.mark.asyncio
    async def test_index_trims_by_age(self, cache):
        await cache.index_add("semantic:index", "old", score=100)
        await cache.index_add("semantic:index", "new", score=500, min_score=200)

        assert await cache.index_range("semantic:index") == [("new", 500.0)]

    @pytest.mark.asyncio
    async def test_index_range_filters_and_limits(self, cache):
        for i in range(5):
            await cache.index_add("semantic:index", f"d{i}", score=float(i))

        rows = await cache.index_range("semantic:index", min_score=2, limit=2)
        assert rows == [("d4", 4.0), ("d3", 3.0)]

        assert await cache.index_remove("semantic:index", "d4") == 1
        assert [m for m, _ in await cache.index_range("semantic:index", min_score=2)] == ["d3", "d2"]

    @pytest.mark.asyncio
    async def test_bounded_list(self, cache):
        for i in range(5):
            await cache.push_to_list("recent_topics", str(i), max_len=3, ttl=60)

        assert await cache.list_range("recent_topics") == ["4", "3", "2"]
        assert await cache.list_range("recent_topics", count=2) == ["4", "3"]


class TestDeleteByPrefix:
    """Test SCAN-based bulk deletion."""

    @pytest.mark.asyncio
    async def test_deletes_only_matching_keys(self, cache, redis_client):
        for i in range(25):
            await cache.put(f"content:{i}", "x", ttl=60)
        await cache.add_to_set("source:CoinDesk", "https://a")
        await cache.put("crosspost:bluesky", "{}", ttl=60)

        removed = await cache.delete_by_prefix("content:", batch_size=10)

        assert removed == 25
        assert await redis_client.exists("source:CoinDesk") == 1
        assert await redis_client.exists("crosspost:bluesky") == 1

    @pytest.mark.asyncio
    async def test_respects_namespace(self, redis_client):
        staging = RecencyCache(redis_client, namespace="staging")
        prod = RecencyCache(redis_client, namespace="prod")
        await staging.put("content:1", "x", ttl=60)
        await prod.put("content:1", "x", ttl=60)

        assert await staging.delete_by_prefix("content:") == 1
        assert await prod.exists("content:1") is True

    @pytest.mark.asyncio
    async def test_glob_characters_are_literal(self, cache):
        await cache.put("source:[weird]*", "x", ttl=60)
        await cache.put("source:other", "x", ttl=60)

        assert await cache.delete_by_prefix("source:[weird]") == 1
        assert await cache.exists("source:other") is True

    @pytest.mark.asyncio
    async def test_never_uses_keys(self, cache, redis_client):
        await cache.put("content:1", "x", ttl=60)
        with patch.object(redis_client, "keys", AsyncMock(side_effect=AssertionError("KEYS used"))):
            assert await cache.delete_by_prefix("content:") == 1


class TestRecencyCacheFailures:
    """Test error mapping and statistics."""

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_store_unavailable(self, cache, redis_client):
        with patch.object(redis_client, "get", AsyncMock(side_effect=RedisConnectionError("down"))):
            with metric_delta("storyguard_store_errors_total", labels={"operation": "get"}):
                with pytest.raises(StoreUnavailable) as exc_info:
                    await cache.get("content:abc")

        assert exc_info.value.operation == "get"
        assert isinstance(exc_info.value.cause, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_pipeline_failure_maps_to_store_unavailable(self, broken_cache):
        with pytest.raises(StoreUnavailable) as exc_info:
            await broken_cache.add_to_set("source:CoinDesk", "https://a", ttl=60)
        assert exc_info.value.operation == "add_to_set"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_store_unavailable(self):
        cache = RecencyCache(SlowRedis(), operation_timeout=0.05)
        with pytest.raises(StoreUnavailable) as exc_info:
            await cache.get("content:abc")
        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_stats_track_errors(self, broken_cache):
        for _ in range(2):
            with pytest.raises(StoreUnavailable):
                await broken_cache.ping()

        stats = broken_cache.get_stats()
        assert stats["operations"] == 2
        assert stats["errors"] == 2
        assert stats["error_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_close_swallows_connection_errors(self, broken_cache):
        await broken_cache.close()
