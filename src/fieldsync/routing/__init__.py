"""Request routing: classification, caching strategies, and offline fallbacks."""

from fieldsync.routing.fallback import offline_api_response, offline_page, service_unavailable
from fieldsync.routing.patterns import MUTATING_METHODS, RequestMatcher
from fieldsync.routing.router import RequestRouter
from fieldsync.routing.strategies import CachingStrategies

__all__ = [
    "MUTATING_METHODS",
    "CachingStrategies",
    "RequestMatcher",
    "RequestRouter",
    "offline_api_response",
    "offline_page",
    "service_unavailable",
]
