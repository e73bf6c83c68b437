"""Tests for CacheEntry and its metadata headers."""

from __future__ import annotations

import httpx

from fieldsync.cache import (
    HEADER_CACHE_STALE,
    HEADER_CACHED,
    HEADER_FROM_CACHE,
    HEADER_TTL,
    CacheEntry,
    make_cache_key,
    strip_metadata,
)

URL = "http://app.test/api/inspections/7"


def _response(request: httpx.Request, **kwargs) -> httpx.Response:
    return httpx.Response(200, request=request, **kwargs)


# ------------------------------------------------------------------ #
# Freshness
# ------------------------------------------------------------------ #


class TestFreshness:
    def test_valid_while_younger_than_ttl(self) -> None:
        entry = CacheEntry(URL, "GET", 200, b"x", cached_at=1000, ttl_ms=500)
        assert entry.is_valid(1000)
        assert entry.is_valid(1499)

    def test_invalid_once_age_reaches_ttl(self) -> None:
        """Validity is strict: now - cached_at must be below ttl_ms."""
        entry = CacheEntry(URL, "GET", 200, b"x", cached_at=1000, ttl_ms=500)
        assert not entry.is_valid(1500)
        assert entry.age_ms(1500) == 500

    def test_size_is_body_length(self) -> None:
        entry = CacheEntry(URL, "GET", 200, b"12345", cached_at=0, ttl_ms=1)
        assert entry.size_bytes == 5


# ------------------------------------------------------------------ #
# Response snapshots
# ------------------------------------------------------------------ #


class TestResponseSnapshot:
    def test_round_trip_preserves_body_and_headers(self) -> None:
        """Reading back an entry yields the written body and headers plus sw-* metadata."""
        request = httpx.Request("GET", URL)
        original = _response(
            request,
            content=b'{"id": 7}',
            headers={"content-type": "application/json", "x-request-id": "abc"},
        )
        entry = CacheEntry.from_response(request, original, cached_at=42, ttl_ms=300_000)
        restored = CacheEntry.from_record(entry.to_record()).to_response()

        assert restored.status_code == 200
        assert restored.content == original.content
        assert dict(strip_metadata(restored.headers.multi_items())) == dict(
            original.headers.multi_items()
        )
        assert restored.headers[HEADER_CACHED] == "42"
        assert restored.headers[HEADER_TTL] == "300000"
        assert HEADER_CACHE_STALE not in restored.headers

    def test_stale_response_is_marked(self) -> None:
        entry = CacheEntry(URL, "GET", 200, b"old", cached_at=1, ttl_ms=1)
        response = entry.to_response(stale=True)
        assert response.headers[HEADER_CACHE_STALE] == "true"
        assert response.headers[HEADER_FROM_CACHE] == "true"
        assert response.text == "old"

    def test_transfer_headers_are_dropped(self) -> None:
        request = httpx.Request("GET", URL)
        original = _response(
            request,
            content=b"plain body",
            headers={"content-encoding": "identity", "content-length": "999"},
        )
        entry = CacheEntry.from_response(request, original, cached_at=0, ttl_ms=10)
        names = {name.lower() for name, _ in entry.headers}
        assert "content-encoding" not in names
        assert dict(entry.headers)["content-length"] == str(len(b"plain body"))

    def test_previous_metadata_is_not_stored(self) -> None:
        request = httpx.Request("GET", URL)
        original = _response(request, content=b"x", headers={HEADER_CACHED: "1"})
        entry = CacheEntry.from_response(request, original, cached_at=5, ttl_ms=10)
        assert all(not name.startswith("sw-") for name, _ in entry.headers)


# ------------------------------------------------------------------ #
# Keys
# ------------------------------------------------------------------ #


class TestCacheKey:
    def test_method_is_part_of_key(self) -> None:
        assert make_cache_key("GET", URL) != make_cache_key("HEAD", URL)

    def test_method_case_is_ignored(self) -> None:
        assert make_cache_key("get", URL) == make_cache_key("GET", URL)

    def test_header_order_does_not_matter(self) -> None:
        a = make_cache_key("GET", URL, [("Accept", "json"), ("X-Tenant", "1")])
        b = make_cache_key("GET", URL, [("x-tenant", "1"), ("accept", "json")])
        assert a == b

    def test_header_values_change_key(self) -> None:
        a = make_cache_key("GET", URL, [("x-tenant", "1")])
        b = make_cache_key("GET", URL, [("x-tenant", "2")])
        assert a != b
