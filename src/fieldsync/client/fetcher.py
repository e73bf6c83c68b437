"""Asynchronous single-attempt HTTP fetcher.

Wraps :class:`httpx.AsyncClient` and maps every transport-level failure
(connection refused, DNS failure, timeout) to
:class:`~fieldsync.exceptions.NetworkError`.  HTTP error statuses are
*not* errors here: a 401 or a 500 is a response the strategies inspect.

Example::

    async with HttpFetcher(config.network) as fetcher:
        response = await fetcher.fetch(httpx.Request("GET", url), timeout=10)
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from fieldsync.exceptions import NetworkError
from fieldsync.models import NetworkConfig

logger = logging.getLogger(__name__)


class HttpFetcher:
    """Single-attempt HTTP fetcher with an explicit per-call timeout.

    Must be used as an async context manager.

    Args:
        config: Default timeout and SSL verification settings.
        transport: Optional transport override (``httpx.MockTransport`` in
            tests).
    """

    def __init__(
        self,
        config: NetworkConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> HttpFetcher:
        self._client = httpx.AsyncClient(
            timeout=self._config.default_timeout,
            verify=self._config.verify_ssl,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        request: httpx.Request,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send *request* once and return the fully read response.

        Args:
            request: The request to send. Its method, URL, headers, and
                body are copied onto a fresh request bound to this client.
            timeout: Seconds before the attempt is abandoned. Defaults to
                ``NetworkConfig.default_timeout``.

        Raises:
            NetworkError: On timeout or any transport failure.
        """
        assert self._client is not None, "Fetcher not initialised -- use as async context manager"

        limit = timeout if timeout is not None else self._config.default_timeout
        outgoing = self._client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.content or None,
            timeout=limit,
        )
        try:
            response = await self._client.send(outgoing)
        except httpx.TimeoutException as exc:
            logger.debug("Timed out after %ss: %s %s", limit, request.method, request.url)
            raise NetworkError(
                f"Request timed out after {limit}s: {request.method} {request.url}"
            ) from exc
        except httpx.TransportError as exc:
            logger.debug("Transport failure for %s %s: %s", request.method, request.url, exc)
            raise NetworkError(f"Network request failed: {request.method} {request.url}: {exc}") from exc

        return response
