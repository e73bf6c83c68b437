"""Cache-first, network-first, and stale-while-revalidate strategies.

Every strategy takes an :class:`httpx.Request` and returns an
:class:`httpx.Response`.  A :class:`~fieldsync.exceptions.NetworkError`
is recovered inside the strategy wherever a cached copy or a deterministic
fallback exists; when neither exists it propagates to the caller, which
owns the last-resort fallback (see
:meth:`~fieldsync.worker.OfflineWorker.handle_fetch`).

Only ``GET`` responses with status 200 are stored.  Auth, RPC, and AI
service responses are never stored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from fieldsync.cache.manager import CacheManager
from fieldsync.client.fetcher import HttpFetcher
from fieldsync.exceptions import NetworkError, QueueError
from fieldsync.models import NetworkConfig, Tier
from fieldsync.mutations.queue import OfflineMutationQueue
from fieldsync.routing.fallback import offline_api_response, offline_page
from fieldsync.routing.patterns import AUTH_STATUSES, RequestMatcher

logger = logging.getLogger(__name__)

_STORABLE_STATUS = 200


class CachingStrategies:
    """The three request-handling strategies of one worker.

    Args:
        cache: Tiered cache store.
        fetcher: Network fetcher (single attempt per call).
        mutations: Queue receiving mutating requests that fail offline.
        matcher: URL classification.
        network: Timeouts for each strategy.
        html_ttl_seconds: TTL for documents stored by stale-while-revalidate.
    """

    def __init__(
        self,
        cache: CacheManager,
        fetcher: HttpFetcher,
        mutations: OfflineMutationQueue,
        matcher: RequestMatcher,
        network: NetworkConfig,
        html_ttl_seconds: int,
    ) -> None:
        self._cache = cache
        self._fetcher = fetcher
        self._mutations = mutations
        self._matcher = matcher
        self._network = network
        self._html_ttl_ms = html_ttl_seconds * 1000
        self._revalidating: set[str] = set()
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------ #
    # Cache first
    # ------------------------------------------------------------------ #

    async def cache_first(self, request: httpx.Request) -> httpx.Response:
        """Serve a valid cached copy without touching the network.

        On a miss or an expired entry the network is tried; a 200 is
        stored.  If the network fails, an expired entry is served marked
        stale; with no entry at all the :class:`NetworkError` propagates.
        """
        if request.method != "GET":
            return await self._fetcher.fetch(request, timeout=self._network.default_timeout)

        tier = Tier.MEDIA if self._matcher.is_media(request.url) else Tier.STATIC
        entry = await self._cache.match(tier, request)
        if entry is not None and entry.is_valid(self._cache.now()):
            return entry.to_response()

        try:
            response = await self._fetcher.fetch(request, timeout=self._network.default_timeout)
        except NetworkError:
            if entry is None:
                raise
            logger.info("Serving expired %s after network failure", request.url)
            return entry.to_response(stale=True)

        if response.status_code == _STORABLE_STATUS:
            stored = await self._cache.put(tier, request, response)
            return stored.to_response() if stored is not None else response
        if entry is not None:
            return entry.to_response(stale=True)
        return response

    # ------------------------------------------------------------------ #
    # Network first
    # ------------------------------------------------------------------ #

    async def network_first(self, request: httpx.Request) -> httpx.Response:
        """Prefer the network, bounded by ``network_first_timeout``.

        * 200 for a storable ``GET``: written to the runtime tier.
        * 401/403/407: returned unmodified, never masked by a cached copy.
        * Other error statuses for a ``GET``: a runtime copy is served
          stale when present, else the response itself.
        * Network failure: see :meth:`_recover`.
        """
        storable = request.method == "GET" and self._matcher.is_cacheable(request.url)
        try:
            response = await self._fetcher.fetch(
                request, timeout=self._network.network_first_timeout
            )
        except NetworkError as exc:
            return await self._recover(request, exc, storable)

        if response.is_success:
            if storable and response.status_code == _STORABLE_STATUS:
                await self._cache.put(Tier.RUNTIME, request, response)
            return response

        if response.status_code in AUTH_STATUSES or not storable:
            return response

        entry = await self._cache.match(Tier.RUNTIME, request)
        if entry is not None:
            logger.info("Serving cached %s after HTTP %d", request.url, response.status_code)
            return entry.to_response(stale=True)
        return response

    async def _recover(
        self,
        request: httpx.Request,
        exc: NetworkError,
        storable: bool,
    ) -> httpx.Response:
        """Answer a request whose network attempt failed.

        Order: stale runtime copy, then the offline queue for mutations,
        then the offline fallback.
        """
        logger.info("Network failed for %s %s, trying cache", request.method, request.url)
        if storable:
            entry = await self._cache.match(Tier.RUNTIME, request)
            if entry is not None:
                return entry.to_response(stale=True)

        if self._matcher.is_mutating(request):
            if self._matcher.is_ai_service(request.url):
                raise exc
            try:
                mutation = await self._mutations.enqueue(request)
            except QueueError as queue_exc:
                logger.error("Could not queue %s %s: %s", request.method, request.url, queue_exc)
                raise exc
            if mutation is None:
                raise exc
            return offline_api_response(request, queued_id=mutation.id)

        return self._offline_fallback(request, exc)

    # ------------------------------------------------------------------ #
    # Stale while revalidate
    # ------------------------------------------------------------------ #

    async def stale_while_revalidate(self, request: httpx.Request) -> httpx.Response:
        """Return any cached copy at once and refresh it in the background.

        With no cached copy the network is awaited; a 200 is stored in the
        static tier with the document TTL.
        """
        if request.method != "GET":
            return await self.network_first(request)

        entry = await self._cache.match(Tier.STATIC, request)
        if entry is not None:
            self._schedule_revalidation(request)
            return entry.to_response()

        try:
            response = await self._fetcher.fetch(request, timeout=self._network.default_timeout)
        except NetworkError as exc:
            return self._offline_fallback(request, exc)

        if response.status_code == _STORABLE_STATUS:
            await self._cache.put(Tier.STATIC, request, response, ttl_ms=self._html_ttl_ms)
        return response

    def _schedule_revalidation(self, request: httpx.Request) -> Optional[asyncio.Task[None]]:
        key = self._cache.make_key(request)
        if key in self._revalidating:
            logger.debug("Already revalidating: %s", request.url)
            return None
        self._revalidating.add(key)
        task = asyncio.create_task(self._revalidate(request, key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _revalidate(self, request: httpx.Request, key: str) -> None:
        try:
            response = await self._fetcher.fetch(request, timeout=self._network.default_timeout)
            if response.status_code == _STORABLE_STATUS:
                await self._cache.put(Tier.STATIC, request, response, ttl_ms=self._html_ttl_ms)
                logger.debug("Background revalidation complete: %s", request.url)
            else:
                logger.debug(
                    "Background revalidation of %s returned HTTP %d",
                    request.url, response.status_code,
                )
        except Exception as exc:
            logger.warning("Background revalidation failed: %s - %s", request.url, exc)
        finally:
            self._revalidating.discard(key)

    async def wait_background(self) -> None:
        """Wait until every background revalidation scheduled so far has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Fallback
    # ------------------------------------------------------------------ #

    def _offline_fallback(self, request: httpx.Request, exc: NetworkError) -> httpx.Response:
        if self._matcher.is_navigation(request):
            return offline_page(request)
        if self._matcher.is_api(request.url):
            return offline_api_response(request)
        raise exc
