"""Tests for CacheManager: partitions, lookups, quota handling, versions."""

from __future__ import annotations

import asyncio

import httpx

from fieldsync.cache import CacheManager
from fieldsync.models import CacheConfig, Tier
from fieldsync.storage import MemoryBlobStore


def _pair(path: str, body: bytes = b"body") -> tuple[httpx.Request, httpx.Response]:
    request = httpx.Request("GET", f"http://app.test{path}")
    return request, httpx.Response(200, content=body, request=request)


class TestPartitions:
    def test_names_embed_prefix_version_and_tier(self) -> None:
        cache = CacheManager(MemoryBlobStore(), CacheConfig(prefix="fs-v"), "3")
        assert cache.partition_name(Tier.STATIC) == "fs-v3-static"
        assert cache.partition_name(Tier.RUNTIME) == "fs-v3-runtime"
        assert cache.partition_name(Tier.MEDIA) == "fs-v3-media"

    def test_ttl_comes_from_tier_policy(self) -> None:
        cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1")
        assert cache.ttl_ms(Tier.RUNTIME) == 5 * 60 * 1000
        assert cache.ttl_ms(Tier.STATIC) == 30 * 24 * 60 * 60 * 1000


class TestPutAndMatch:
    def test_put_then_match(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            request, response = _pair("/app.js", b"console.log(1)")
            stored = await cache.put(Tier.STATIC, request, response)

            entry = await cache.match(Tier.STATIC, request)
            assert entry is not None
            assert entry.body == b"console.log(1)"
            assert entry.cached_at == clock.now
            assert entry.ttl_ms == stored.ttl_ms == cache.ttl_ms(Tier.STATIC)
            assert await cache.match(Tier.RUNTIME, request) is None

        asyncio.run(scenario())

    def test_ttl_override(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            request, response = _pair("/")
            await cache.put(Tier.STATIC, request, response, ttl_ms=1234)
            entry = await cache.match(Tier.STATIC, request)
            assert entry.ttl_ms == 1234

        asyncio.run(scenario())

    def test_expired_entries_are_still_returned(self, clock) -> None:
        """Expiry is checked by the caller; lookups return stale entries too."""

        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            request, response = _pair("/api/list")
            await cache.put(Tier.RUNTIME, request, response)
            clock.advance(cache.ttl_ms(Tier.RUNTIME) + 1)

            entry = await cache.match(Tier.RUNTIME, request)
            assert entry is not None
            assert not entry.is_valid(cache.now())

        asyncio.run(scenario())

    def test_match_any_searches_every_tier(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            request, response = _pair("/photo.jpg")
            await cache.put(Tier.MEDIA, request, response)
            assert (await cache.match_any(request)).body == b"body"

        asyncio.run(scenario())

    def test_key_headers_split_entries(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(
                MemoryBlobStore(), CacheConfig(key_headers=["x-tenant"]), "1", clock=clock
            )
            a = httpx.Request("GET", "http://app.test/api/me", headers={"x-tenant": "a"})
            b = httpx.Request("GET", "http://app.test/api/me", headers={"x-tenant": "b"})
            await cache.put(Tier.RUNTIME, a, httpx.Response(200, content=b"A", request=a))

            assert (await cache.match(Tier.RUNTIME, a)).body == b"A"
            assert await cache.match(Tier.RUNTIME, b) is None

        asyncio.run(scenario())


class TestQuota:
    def test_quota_failure_skips_the_write(self, clock, caplog) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(quota_bytes=10), CacheConfig(), "1", clock=clock)
            request, response = _pair("/big.js", b"x" * 50)

            assert await cache.put(Tier.STATIC, request, response) is None
            assert await cache.match(Tier.STATIC, request) is None

        asyncio.run(scenario())
        assert "skipped" in caplog.text


class TestClearing:
    def test_clear_one_tier(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            static, static_resp = _pair("/a.js")
            runtime, runtime_resp = _pair("/api/a")
            await cache.put(Tier.STATIC, static, static_resp)
            await cache.put(Tier.RUNTIME, runtime, runtime_resp)

            assert await cache.clear(Tier.STATIC) == [cache.partition_name(Tier.STATIC)]
            assert await cache.match(Tier.STATIC, static) is None
            assert await cache.match(Tier.RUNTIME, runtime) is not None

        asyncio.run(scenario())

    def test_clear_everything_keeps_foreign_partitions(self, clock) -> None:
        async def scenario() -> None:
            store = MemoryBlobStore()
            await store.put("someone-else", "k", {"cached_at": 0, "size_bytes": 1})
            cache = CacheManager(store, CacheConfig(), "1", clock=clock)
            request, response = _pair("/a.js")
            await cache.put(Tier.STATIC, request, response)

            dropped = await cache.clear()
            assert dropped == [cache.partition_name(Tier.STATIC)]
            assert await store.partitions() == ["someone-else"]

        asyncio.run(scenario())

    def test_clear_named_accepts_tier_or_partition(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            for tier, path in [(Tier.STATIC, "/a.js"), (Tier.MEDIA, "/a.png")]:
                request, response = _pair(path)
                await cache.put(tier, request, response)

            assert await cache.clear_named("static") == [cache.partition_name(Tier.STATIC)]
            media = cache.partition_name(Tier.MEDIA)
            assert await cache.clear_named(media) == [media]
            assert await cache.clear_named("missing") == []

        asyncio.run(scenario())

    def test_cleanup_old_versions(self, clock) -> None:
        async def scenario() -> None:
            store = MemoryBlobStore()
            old = CacheManager(store, CacheConfig(), "1", clock=clock)
            new = CacheManager(store, CacheConfig(), "2", clock=clock)
            request, response = _pair("/a.js")
            await old.put(Tier.STATIC, request, response)
            await new.put(Tier.STATIC, request, response)

            dropped = await new.cleanup_old_versions()

            assert dropped == [old.partition_name(Tier.STATIC)]
            assert await store.partitions() == [new.partition_name(Tier.STATIC)]

        asyncio.run(scenario())


class TestStats:
    def test_stats_per_tier(self, clock) -> None:
        async def scenario() -> None:
            cache = CacheManager(MemoryBlobStore(), CacheConfig(), "1", clock=clock)
            request, response = _pair("/a.js", b"12345")
            await cache.put(Tier.STATIC, request, response)

            stats = await cache.stats()
            assert set(stats) == {"static", "runtime", "media"}
            assert stats["static"]["entries"] == 1
            assert stats["static"]["size_bytes"] == 5
            assert stats["runtime"]["entries"] == 0
            assert stats["media"]["max_size_bytes"] == 100 * 1024 * 1024

        asyncio.run(scenario())
