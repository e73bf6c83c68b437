"""Request classification and strategy dispatch."""

from __future__ import annotations

import logging

import httpx

from fieldsync.models import Strategy
from fieldsync.routing.patterns import RequestMatcher
from fieldsync.routing.strategies import CachingStrategies

logger = logging.getLogger(__name__)


class RequestRouter:
    """Picks a caching strategy for each request and delegates to it.

    Classification order:

    1. Mutating methods (POST, PUT, PATCH, DELETE), whatever the URL -> network-first
    2. Static assets (known extensions, ``/static/``, ``/assets/``) -> cache-first
    3. API, auth, RPC, backend host, AI service -> network-first
    4. Navigations and the root path -> stale-while-revalidate
    5. Everything else -> network-first

    The router has no side effects of its own; whatever the strategy
    returns or raises reaches the caller unchanged.
    """

    def __init__(self, matcher: RequestMatcher, strategies: CachingStrategies) -> None:
        self._matcher = matcher
        self._handlers = {
            Strategy.CACHE_FIRST: strategies.cache_first,
            Strategy.NETWORK_FIRST: strategies.network_first,
            Strategy.STALE_WHILE_REVALIDATE: strategies.stale_while_revalidate,
        }

    def classify(self, request: httpx.Request) -> Strategy:
        url = request.url
        if self._matcher.is_mutating(request):
            return Strategy.NETWORK_FIRST
        if self._matcher.is_static(url):
            return Strategy.CACHE_FIRST
        if self._matcher.is_api(url):
            return Strategy.NETWORK_FIRST
        if self._matcher.is_navigation(request) or url.path in ("", "/"):
            return Strategy.STALE_WHILE_REVALIDATE
        return Strategy.NETWORK_FIRST

    async def route(self, request: httpx.Request) -> httpx.Response:
        strategy = self.classify(request)
        logger.debug("%s %s -> %s", request.method, request.url, strategy.value)
        return await self._handlers[strategy](request)
