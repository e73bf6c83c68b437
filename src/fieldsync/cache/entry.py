"""Cached response entries and their metadata headers.

A :class:`CacheEntry` is one stored response.  Its freshness is computed
lazily from two timestamps carried with it: ``cached_at`` (epoch ms) and
``ttl_ms``.  Expired entries stay in their tier until they are evicted or
overwritten, because network-first and offline fallbacks still serve them
as stale copies.

When an entry is turned back into an :class:`httpx.Response` the metadata
is exposed as headers:

* ``sw-cached`` -- ``cached_at`` as a decimal string
* ``sw-ttl`` -- ``ttl_ms`` as a decimal string
* ``sw-from-cache`` / ``sw-cache-stale`` -- ``"true"`` when served stale
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

HEADER_CACHED = "sw-cached"
HEADER_TTL = "sw-ttl"
HEADER_FROM_CACHE = "sw-from-cache"
HEADER_CACHE_STALE = "sw-cache-stale"

# httpx has already decoded the body, so these no longer describe it.
_DROPPED_HEADERS = frozenset({"content-encoding", "transfer-encoding"})


def make_cache_key(method: str, url: str, headers: Iterable[tuple[str, str]] = ()) -> str:
    """Build a stable cache key from method, URL, and the relevant request headers.

    Header names are lower-cased and sorted so the key does not depend on
    the order the caller supplied them in.
    """
    parts = [method.upper(), url]
    for name, value in sorted((n.lower(), v) for n, v in headers):
        parts.append(f"{name}={value}")
    raw = "|".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()


def strip_metadata(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Return *headers* without any ``sw-*`` metadata headers."""
    return [(k, v) for k, v in headers if not k.lower().startswith("sw-")]


@dataclass
class CacheEntry:
    """One stored response with its freshness metadata."""

    url: str
    method: str
    status_code: int
    body: bytes
    cached_at: int
    ttl_ms: int
    headers: list[tuple[str, str]] = field(default_factory=list)

    @property
    def size_bytes(self) -> int:
        return len(self.body)

    def age_ms(self, now: int) -> int:
        return now - self.cached_at

    def is_valid(self, now: int) -> bool:
        """True while ``now - cached_at < ttl_ms``."""
        return self.age_ms(now) < self.ttl_ms

    @classmethod
    def from_response(
        cls,
        request: httpx.Request,
        response: httpx.Response,
        cached_at: int,
        ttl_ms: int,
    ) -> CacheEntry:
        """Snapshot a fully read network response for storage.

        Transfer headers describing the undecoded wire body are dropped,
        ``Content-Length`` is rewritten to the stored body length, and any
        ``sw-*`` headers a previous cache layer added are discarded.
        """
        body = response.content
        headers: list[tuple[str, str]] = []
        for name, value in strip_metadata(response.headers.multi_items()):
            lowered = name.lower()
            if lowered in _DROPPED_HEADERS:
                continue
            if lowered == "content-length":
                value = str(len(body))
            headers.append((name, value))
        return cls(
            url=str(request.url),
            method=request.method,
            status_code=response.status_code,
            body=body,
            cached_at=cached_at,
            ttl_ms=ttl_ms,
            headers=headers,
        )

    def to_response(self, stale: bool = False) -> httpx.Response:
        """Rebuild an :class:`httpx.Response` carrying the ``sw-*`` metadata headers."""
        headers = list(self.headers)
        headers.append((HEADER_CACHED, str(self.cached_at)))
        headers.append((HEADER_TTL, str(self.ttl_ms)))
        if stale:
            headers.append((HEADER_FROM_CACHE, "true"))
            headers.append((HEADER_CACHE_STALE, "true"))
        return httpx.Response(
            status_code=self.status_code,
            headers=headers,
            content=self.body,
            request=httpx.Request(self.method, self.url),
        )

    def to_record(self) -> dict[str, Any]:
        """Serialise for a :class:`~fieldsync.storage.BlobStore`."""
        return {
            "url": self.url,
            "method": self.method,
            "status_code": self.status_code,
            "headers": [list(pair) for pair in self.headers],
            "body": self.body,
            "cached_at": self.cached_at,
            "ttl_ms": self.ttl_ms,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CacheEntry:
        return cls(
            url=record["url"],
            method=record["method"],
            status_code=record["status_code"],
            body=record["body"],
            cached_at=record["cached_at"],
            ttl_ms=record["ttl_ms"],
            headers=[(k, v) for k, v in record.get("headers", [])],
        )
