"""Tiered cache store.

:class:`CacheManager` owns the three cache tiers (static, runtime, media)
of one worker.  Each tier is a partition of the injected
:class:`~fieldsync.storage.BlobStore` named ``<prefix><version>-<tier>``.
Every successful write is followed by an
:class:`~fieldsync.cache.eviction.EvictionManager` pass for that tier.

Caching is best-effort: a write refused with
:class:`~fieldsync.exceptions.QuotaExceeded` is logged and reported as
``None`` so the caller still returns its response uncached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from fieldsync.cache.entry import CacheEntry, make_cache_key
from fieldsync.cache.eviction import EvictionManager
from fieldsync.clock import Clock, now_ms
from fieldsync.exceptions import QuotaExceeded
from fieldsync.models import CacheConfig, Tier
from fieldsync.storage.base import BlobStore

logger = logging.getLogger(__name__)


class CacheManager:
    """Owns the cache tiers of a single worker.

    Args:
        store: Blob store holding the tier partitions.
        config: Tier budgets, TTLs, partition prefix, and key headers.
        version: Worker version embedded in partition names.
        clock: Source of epoch-millisecond timestamps.
    """

    def __init__(
        self,
        store: BlobStore,
        config: CacheConfig,
        version: str,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._version = version
        self._clock = clock or now_ms
        self._eviction = EvictionManager(store)
        self._writes: set[asyncio.Task[Optional[CacheEntry]]] = set()

    @property
    def eviction(self) -> EvictionManager:
        return self._eviction

    def now(self) -> int:
        return self._clock()

    def partition_name(self, tier: Tier) -> str:
        return f"{self._config.prefix}{self._version}-{tier.value}"

    def ttl_ms(self, tier: Tier) -> int:
        return self._config.for_tier(tier).ttl_seconds * 1000

    def make_key(self, request: httpx.Request) -> str:
        wanted = {name.lower() for name in self._config.key_headers}
        relevant = [(k, v) for k, v in request.headers.multi_items() if k.lower() in wanted]
        return make_cache_key(request.method, str(request.url), relevant)

    async def match(self, tier: Tier, request: httpx.Request) -> Optional[CacheEntry]:
        """Look up *request* in *tier*, regardless of freshness.

        Returns:
            The stored entry, or ``None`` on a miss.
        """
        record = await self._store.get(self.partition_name(tier), self.make_key(request))
        if record is None:
            return None
        return CacheEntry.from_record(record)

    async def match_any(self, request: httpx.Request) -> Optional[CacheEntry]:
        """Look up *request* in every tier (static, runtime, media) and return the first hit."""
        for tier in (Tier.STATIC, Tier.RUNTIME, Tier.MEDIA):
            entry = await self.match(tier, request)
            if entry is not None:
                return entry
        return None

    async def put(
        self,
        tier: Tier,
        request: httpx.Request,
        response: httpx.Response,
        ttl_ms: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        """Store *response* for *request* in *tier*, then enforce the tier budget.

        The write and its eviction pass run as one task that outlives a
        cancelled caller, so a write that was issued is always followed by
        eviction.  :meth:`wait_writes` waits for such orphaned writes.

        Args:
            ttl_ms: Overrides the tier TTL for this entry.

        Returns:
            The stored entry, or ``None`` if the store refused the write.
        """
        entry = CacheEntry.from_response(
            request,
            response,
            cached_at=self.now(),
            ttl_ms=ttl_ms if ttl_ms is not None else self.ttl_ms(tier),
        )
        task = asyncio.create_task(self._write(tier, self.make_key(request), entry))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)
        return await asyncio.shield(task)

    async def _write(self, tier: Tier, key: str, entry: CacheEntry) -> Optional[CacheEntry]:
        try:
            await self._store.put(self.partition_name(tier), key, entry.to_record())
        except QuotaExceeded as exc:
            logger.warning("Caching %s skipped: %s", entry.url, exc)
            return None
        await self.enforce(tier)
        return entry

    async def wait_writes(self) -> None:
        """Wait for writes (and their eviction passes) whose callers went away."""
        while self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)

    async def delete(self, tier: Tier, request: httpx.Request) -> bool:
        return await self._store.delete(self.partition_name(tier), self.make_key(request))

    async def enforce(self, tier: Tier) -> list[str]:
        """Run one eviction pass for *tier*."""
        budget = self._config.for_tier(tier).max_size_bytes
        return await self._eviction.enforce(self.partition_name(tier), budget)

    async def clear(self, tier: Optional[Tier] = None) -> list[str]:
        """Drop one tier, or every partition carrying this cache's prefix.

        Returns:
            Names of the partitions that were deleted.
        """
        if tier is not None:
            name = self.partition_name(tier)
            return [name] if await self._store.drop_partition(name) else []

        dropped = []
        for name in await self._store.partitions():
            if name.startswith(self._config.prefix) and await self._store.drop_partition(name):
                dropped.append(name)
        logger.info("Cleared %d cache partitions", len(dropped))
        return dropped

    async def clear_named(self, name: str) -> list[str]:
        """Drop a partition given either its tier name or its full partition name."""
        try:
            return await self.clear(Tier(name))
        except ValueError:
            pass
        return [name] if await self._store.drop_partition(name) else []

    async def cleanup_old_versions(self) -> list[str]:
        """Delete partitions with this cache's prefix that belong to another version."""
        current = {self.partition_name(tier) for tier in Tier}
        dropped = []
        for name in await self._store.partitions():
            if name.startswith(self._config.prefix) and name not in current:
                if await self._store.drop_partition(name):
                    logger.info("Deleted cache partition from old version: %s", name)
                    dropped.append(name)
        return dropped

    async def stats(self) -> dict[str, dict[str, Any]]:
        """Rescan every tier and report its entry count, size, and budget."""
        result: dict[str, dict[str, Any]] = {}
        for tier in Tier:
            partition = self.partition_name(tier)
            total, entries = await self._eviction.measure(partition)
            policy = self._config.for_tier(tier)
            result[tier.value] = {
                "partition": partition,
                "entries": len(entries),
                "size_bytes": total,
                "max_size_bytes": policy.max_size_bytes,
                "ttl_seconds": policy.ttl_seconds,
            }
        return result

    async def run_maintenance(self) -> dict[str, dict[str, Any]]:
        """Evict every tier down to budget and return the resulting stats."""
        for tier in Tier:
            evicted = await self.enforce(tier)
            if evicted:
                logger.info("Maintenance evicted %d entries from %s", len(evicted), tier.value)
        return await self.stats()
