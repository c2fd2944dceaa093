"""
Unit tests for the tiered cache generations.
Tests fingerprint normalization, generation naming, lookups and eviction.
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from src.shared.caching.cache_manager import (
    CacheTier, CacheTierManager, CachedResponse, Fingerprint,
    MemoryCacheStorage, RedisCacheStorage, create_cache_storage
)
from src.shared.config import OfflineSettings, CacheBackend
from src.shared.exceptions import StorageUnavailable
from src.transport.http_client import Request, Response


ORIGIN = "http://localhost:3000"


@pytest.fixture
def entry():
    return CachedResponse(status=200, headers={"Content-Type": "text/css"}, body=b"body{}")


class TestFingerprint:
    """Test request fingerprint normalization."""

    def test_relative_url_resolved_against_origin(self):
        """Relative paths resolve to absolute URLs."""
        fp = Fingerprint.from_request(Request(url="/static/css/main.css"), ORIGIN)

        assert fp.method == "GET"
        assert fp.url == "http://localhost:3000/static/css/main.css"
        assert fp.key == "GET http://localhost:3000/static/css/main.css"

    def test_scheme_host_and_default_port_normalized(self):
        """Scheme and host are lower-cased and default ports dropped."""
        fp = Fingerprint.from_request(Request(url="HTTP://Example.COM:80/a#frag"))

        assert fp.url == "http://example.com/a"

    def test_query_kept_verbatim(self):
        """Query strings are part of the identity."""
        a = Fingerprint.for_path("/api/items?b=2&a=1", ORIGIN)
        b = Fingerprint.for_path("/api/items?a=1&b=2", ORIGIN)

        assert a != b
        assert a.url.endswith("?b=2&a=1")

    def test_method_upper_cased(self):
        """Methods are compared upper-case."""
        fp = Fingerprint.from_request(Request(url="/x", method="post"), ORIGIN)

        assert fp.method == "POST"

    def test_empty_path_becomes_root(self):
        """An origin without a path addresses the root document."""
        assert Fingerprint.for_path("http://localhost:3000").url == "http://localhost:3000/"


class TestCachedResponse:
    """Test cached response conversion."""

    def test_to_response_marks_cache_origin(self, entry):
        """Responses served from a generation are flagged as cached."""
        response = entry.to_response("http://localhost:3000/main.css")

        assert response.from_cache is True
        assert response.status == 200
        assert response.body == b"body{}"

    def test_dict_form_carries_binary_body(self):
        """Binary bodies survive serialization for the Redis backend."""
        entry = CachedResponse(status=200, headers={}, body=b"\x89PNG\x00\xff")

        restored = CachedResponse.from_dict(json.loads(json.dumps(entry.to_dict())))

        assert restored.body == entry.body
        assert restored.stored_at == entry.stored_at


class TestCacheTierManager:
    """Test CacheTierManager functionality."""

    def test_generation_names_embed_version(self, cache):
        """Generation names follow the tier-version scheme."""
        assert cache.generation_name(CacheTier.STATIC) == "static-v1"
        assert cache.current_generation_names() == {"static-v1", "dynamic-v1", "api-v1"}

    @pytest.mark.asyncio
    async def test_open_is_idempotent(self, cache, storage, entry):
        """Opening an existing generation keeps its entries."""
        handle = await cache.open(CacheTier.STATIC)
        fp = Fingerprint.for_path("/main.css", ORIGIN)
        await handle.store(fp, entry)

        again = await cache.open(CacheTier.STATIC)

        assert again.name == "static-v1"
        assert await again.lookup(fp) == entry
        assert await cache.list_generation_names() == {"static-v1"}

    @pytest.mark.asyncio
    async def test_entry_counts(self, cache, entry):
        await cache.open(CacheTier.API)
        await cache.store(CacheTier.STATIC, Fingerprint.for_path("/a.css", ORIGIN), entry)
        await cache.store(CacheTier.STATIC, Fingerprint.for_path("/b.css", ORIGIN), entry)

        assert await cache.entry_counts() == {"api-v1": 0, "static-v1": 2}

    @pytest.mark.asyncio
    async def test_lookup_miss_returns_none(self, cache):
        """Misses are not errors."""
        assert await cache.lookup(CacheTier.API, Fingerprint.for_path("/api/x", ORIGIN)) is None
        assert cache.stats['misses'] == 1

    @pytest.mark.asyncio
    async def test_store_replaces_entry_wholesale(self, cache):
        """A re-fetch replaces the stored entry."""
        fp = Fingerprint.for_path("/api/stats", ORIGIN)
        await cache.store(CacheTier.API, fp, CachedResponse(200, {}, b"old"))
        await cache.store(CacheTier.API, fp, CachedResponse(200, {"X": "1"}, b"new"))

        stored = await cache.lookup(CacheTier.API, fp)

        assert stored.body == b"new"
        assert stored.headers == {"X": "1"}

    @pytest.mark.asyncio
    async def test_only_get_is_cached(self, cache, entry):
        """Non-GET fingerprints never reach a generation."""
        fp = Fingerprint.from_request(Request(url="/api/orders", method="POST"), ORIGIN)

        with pytest.raises(ValueError):
            await cache.store(CacheTier.API, fp, entry)
        assert await cache.lookup(CacheTier.API, fp) is None

    @pytest.mark.asyncio
    async def test_match_checks_tiers_in_order(self, cache):
        """The first tier with a hit wins."""
        fp = Fingerprint.for_path("/dashboard", ORIGIN)
        await cache.store(CacheTier.STATIC, fp, CachedResponse(200, {}, b"static"))
        await cache.store(CacheTier.DYNAMIC, fp, CachedResponse(200, {}, b"dynamic"))

        assert (await cache.match(fp)).body == b"dynamic"
        assert (await cache.match(fp, tiers=(CacheTier.STATIC,))).body == b"static"

    @pytest.mark.asyncio
    async def test_delete_generations_not_in(self, storage, entry):
        """Only generations outside the kept set are deleted."""
        old = CacheTierManager(storage, "1")
        new = CacheTierManager(storage, "2")
        fp = Fingerprint.for_path("/main.css", ORIGIN)
        for tier in CacheTier:
            await old.store(tier, fp, entry)
        await new.store(CacheTier.STATIC, fp, entry)

        deleted = await new.delete_generations_not_in(new.current_generation_names())

        assert deleted == ["api-v1", "dynamic-v1", "static-v1"]
        assert await new.list_generation_names() == {"static-v2"}
        assert new.get_stats()['generations_deleted'] == 3

    @pytest.mark.asyncio
    async def test_delete_with_nothing_stale(self, cache, entry):
        """Deleting against a superset of names is a no-op."""
        await cache.store(CacheTier.API, Fingerprint.for_path("/api/x", ORIGIN), entry)

        assert await cache.delete_generations_not_in(cache.current_generation_names()) == []


class TestRedisCacheStorage:
    """Test RedisCacheStorage with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.hget = AsyncMock(return_value=None)
        client.sadd = AsyncMock(return_value=1)
        client.smembers = AsyncMock(return_value={b"static-v1", b"api-v1"})
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_get_decodes_entry(self, redis_client, entry):
        """Stored JSON is decoded into a CachedResponse."""
        redis_client.hget.return_value = json.dumps(entry.to_dict()).encode("utf-8")
        storage = RedisCacheStorage("redis://localhost:6379", client=redis_client)

        result = await storage.get("static-v1", "GET http://localhost:3000/main.css")

        assert result == entry
        redis_client.hget.assert_awaited_once_with(
            "offline-edge:generation:static-v1", "GET http://localhost:3000/main.css"
        )

    @pytest.mark.asyncio
    async def test_names_decoded(self, redis_client):
        """Generation names come back as strings."""
        storage = RedisCacheStorage("redis://localhost:6379", client=redis_client)

        assert await storage.names() == {"static-v1", "api-v1"}

    @pytest.mark.asyncio
    async def test_connection_failure_is_storage_unavailable(self, redis_client):
        """An unreachable Redis surfaces as StorageUnavailable."""
        redis_client.ping.side_effect = RedisConnectionError("refused")
        storage = RedisCacheStorage("redis://localhost:6379", client=redis_client)

        with pytest.raises(StorageUnavailable):
            await storage.connect()

    @pytest.mark.asyncio
    async def test_read_failure_is_storage_unavailable(self, redis_client):
        """Command errors surface as StorageUnavailable."""
        redis_client.hget.side_effect = RedisConnectionError("gone")
        storage = RedisCacheStorage("redis://localhost:6379", client=redis_client)

        with pytest.raises(StorageUnavailable):
            await storage.get("static-v1", "GET http://localhost:3000/")

    @pytest.mark.asyncio
    async def test_close_releases_client(self, redis_client):
        """Closing drops the client."""
        storage = RedisCacheStorage("redis://localhost:6379", client=redis_client)

        await storage.close()

        redis_client.aclose.assert_awaited_once()
        assert storage.redis_client is None


class TestCreateCacheStorage:
    """Test backend selection."""

    def test_memory_backend_by_default(self):
        assert isinstance(create_cache_storage(OfflineSettings()), MemoryCacheStorage)

    def test_redis_backend(self):
        settings = OfflineSettings(cache_backend=CacheBackend.REDIS, redis_key_prefix="edge")

        storage = create_cache_storage(settings)

        assert isinstance(storage, RedisCacheStorage)
        assert storage.prefix == "edge"
