"""URL classification shared by the router, the strategies, and the fallbacks."""

from __future__ import annotations

import re

import httpx

from fieldsync.models import RouterConfig

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
AUTH_STATUSES = frozenset({401, 403, 407})


def _extension_pattern(extensions: list[str]) -> re.Pattern[str]:
    joined = "|".join(re.escape(ext.lstrip(".")) for ext in extensions)
    return re.compile(rf"\.({joined})$", re.IGNORECASE)


class RequestMatcher:
    """Compiled view of a :class:`~fieldsync.models.RouterConfig`."""

    def __init__(self, config: RouterConfig) -> None:
        self._config = config
        self._static_ext = _extension_pattern(config.static_extensions)
        self._media_ext = _extension_pattern(config.media_extensions)
        self._ai = [re.compile(p) for p in config.ai_service_patterns]

    def is_static(self, url: httpx.URL) -> bool:
        path = url.path
        if self._static_ext.search(path):
            return True
        return any(prefix in path for prefix in self._config.static_prefixes)

    def is_media(self, url: httpx.URL) -> bool:
        return bool(self._media_ext.search(url.path))

    def is_auth(self, url: httpx.URL) -> bool:
        return any(prefix in url.path for prefix in self._config.auth_prefixes)

    def is_rpc(self, url: httpx.URL) -> bool:
        return any(prefix in url.path for prefix in self._config.rpc_prefixes)

    def is_ai_service(self, url: httpx.URL) -> bool:
        full = str(url)
        return any(pattern.search(full) for pattern in self._ai)

    def is_api(self, url: httpx.URL) -> bool:
        """True for Backend API, auth, RPC, and AI service URLs."""
        if any(prefix in url.path for prefix in self._config.api_prefixes):
            return True
        if self._config.backend_host and url.host == self._config.backend_host:
            return True
        return self.is_auth(url) or self.is_rpc(url) or self.is_ai_service(url)

    def is_cacheable(self, url: httpx.URL) -> bool:
        """False for URLs whose responses must never be served from cache."""
        return not (self.is_auth(url) or self.is_rpc(url) or self.is_ai_service(url))

    @staticmethod
    def is_navigation(request: httpx.Request) -> bool:
        """True for top-level document loads."""
        if request.headers.get("sec-fetch-mode", "").lower() == "navigate":
            return True
        if request.headers.get("sec-fetch-dest", "").lower() == "document":
            return True
        return "text/html" in request.headers.get("accept", "").lower()

    @staticmethod
    def is_mutating(request: httpx.Request) -> bool:
        return request.method.upper() in MUTATING_METHODS
