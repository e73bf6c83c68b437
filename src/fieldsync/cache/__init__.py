"""Tiered response cache with TTL metadata and size-bounded eviction."""

from fieldsync.cache.entry import (
    HEADER_CACHE_STALE,
    HEADER_CACHED,
    HEADER_FROM_CACHE,
    HEADER_TTL,
    CacheEntry,
    make_cache_key,
    strip_metadata,
)
from fieldsync.cache.eviction import EvictionManager
from fieldsync.cache.manager import CacheManager

__all__ = [
    "HEADER_CACHED",
    "HEADER_CACHE_STALE",
    "HEADER_FROM_CACHE",
    "HEADER_TTL",
    "CacheEntry",
    "CacheManager",
    "EvictionManager",
    "make_cache_key",
    "strip_metadata",
]
