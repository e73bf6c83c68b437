"""The offline worker: one instance per origin, driven by typed events.

:class:`OfflineWorker` wires the cache, router, mutation queue, sync
coordinator, and broadcaster together and exposes a single
:meth:`~OfflineWorker.dispatch` entry point.  Each event variant has its
own handler:

=========================  =============================================
Event                      Handler result
=========================  =============================================
:class:`FetchEvent`        :class:`httpx.Response`, or ``None`` for
                           non-HTTP(S) URLs the worker does not handle
:class:`SyncEvent`         :class:`~fieldsync.sync.DrainResult`, or
                           ``None`` for an unknown tag
:class:`MessageEvent`      Reply dict, or ``None`` for unknown types
:class:`InstallEvent`      URLs that were precached
:class:`ActivateEvent`     Names of deleted old-version partitions
:class:`PushEvent`         Notification shown to the clients, or
                           ``None`` for a push without data
:class:`NotificationClickEvent`  URL the client was asked to open
=========================  =============================================

Handlers run as independent tasks on one event loop and interleave at
every network fetch and store access.  The stores, fetcher, and
broadcaster are injected; the worker never opens or closes them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx

from fieldsync.cache.manager import CacheManager
from fieldsync.client.fetcher import HttpFetcher
from fieldsync.clock import Clock, now_ms
from fieldsync.exceptions import InvalidUsageError, NetworkError
from fieldsync.models import MessageType, QueuedMutation, SyncTag, Tier, WorkerConfig
from fieldsync.mutations.queue import OfflineMutationQueue
from fieldsync.routing.fallback import offline_api_response, offline_page, service_unavailable
from fieldsync.routing.patterns import RequestMatcher
from fieldsync.routing.router import RequestRouter
from fieldsync.routing.strategies import CachingStrategies
from fieldsync.storage.base import BlobStore, PersistentQueue
from fieldsync.sync.broadcast import ClientBroadcaster
from fieldsync.sync.coordinator import DrainResult, SyncCoordinator

logger = logging.getLogger(__name__)


# --- Events ---


@dataclass
class FetchEvent:
    request: httpx.Request
    client_id: Optional[str] = None


@dataclass
class SyncEvent:
    """Connectivity-restored or periodic signal for one sync tag string."""

    tag: str


@dataclass
class MessageEvent:
    """Control message from a foreground client: ``{"type": ..., "payload": {...}}``."""

    data: dict[str, Any]
    client_id: Optional[str] = None


@dataclass
class InstallEvent:
    pass


@dataclass
class ActivateEvent:
    pass


@dataclass
class PushEvent:
    """Push message from the backend; ``data`` is its raw JSON text, if any."""

    data: Optional[Union[bytes, str]] = None


@dataclass
class NotificationClickEvent:
    action: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


WorkerEvent = Union[
    FetchEvent,
    SyncEvent,
    MessageEvent,
    InstallEvent,
    ActivateEvent,
    PushEvent,
    NotificationClickEvent,
]

# Shown when a push payload cannot be parsed.
GENERIC_NOTIFICATION: dict[str, Any] = {
    "title": "Field inspection",
    "body": "You have a new notification",
    "tag": "generic",
}


# --- Worker ---


class OfflineWorker:
    """Request interception, caching, and offline sync for one origin.

    Args:
        config: Fully resolved worker configuration.
        blob_store: Storage for the cache tiers.
        queue_backend: Durable storage for queued mutations.
        broadcaster: Channel to connected foreground clients.
        fetcher: Entered :class:`HttpFetcher` used for every network call.
        clock: Source of epoch-millisecond timestamps.
    """

    def __init__(
        self,
        config: WorkerConfig,
        blob_store: BlobStore,
        queue_backend: PersistentQueue,
        broadcaster: ClientBroadcaster,
        fetcher: HttpFetcher,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self._clock = clock or now_ms
        self._fetcher = fetcher
        self.broadcaster = broadcaster

        self.cache = CacheManager(blob_store, config.cache, config.version, self._clock)
        self.matcher = RequestMatcher(config.router)
        self.mutations = OfflineMutationQueue(
            queue_backend, config.queue, config.sync, self._clock, listener=self._on_enqueue
        )
        self.strategies = CachingStrategies(
            self.cache,
            fetcher,
            self.mutations,
            self.matcher,
            config.network,
            config.cache.html_ttl_seconds,
        )
        self.router = RequestRouter(self.matcher, self.strategies)
        self.coordinator = SyncCoordinator(
            self.mutations, fetcher, broadcaster, timeout=config.network.default_timeout
        )

        self.registered_tags: set[SyncTag] = set()
        self.installed = False
        self.activated = False
        self.skip_waiting_requested = False

        self._handlers = {
            FetchEvent: self.handle_fetch,
            SyncEvent: self.handle_sync,
            MessageEvent: self.handle_message,
            InstallEvent: self.handle_install,
            ActivateEvent: self.handle_activate,
            PushEvent: self.handle_push,
            NotificationClickEvent: self.handle_notification_click,
        }

    async def dispatch(self, event: WorkerEvent) -> Any:
        """Route *event* to its handler and return the handler's result.

        Raises:
            InvalidUsageError: If *event* is not a known event variant.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise InvalidUsageError(f"Unsupported event: {type(event).__name__}")
        return await handler(event)

    # ------------------------------------------------------------------ #
    # Fetch
    # ------------------------------------------------------------------ #

    async def handle_fetch(self, event: FetchEvent) -> Optional[httpx.Response]:
        """Answer one intercepted request. Never raises :class:`NetworkError`."""
        request = event.request
        if request.url.scheme not in ("http", "https"):
            return None

        await request.aread()
        try:
            return await self.router.route(request)
        except NetworkError as exc:
            logger.info("Unrecovered network failure for %s: %s", request.url, exc)
            return await self._last_resort(request)

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        """Convenience wrapper around :meth:`handle_fetch` for HTTP(S) requests."""
        response = await self.handle_fetch(FetchEvent(request))
        if response is None:
            raise InvalidUsageError(f"Not an HTTP(S) URL: {request.url}")
        return response

    async def _last_resort(self, request: httpx.Request) -> httpx.Response:
        if self.matcher.is_navigation(request):
            return offline_page(request)
        if request.method == "GET" and self.matcher.is_cacheable(request.url):
            entry = await self.cache.match_any(request)
            if entry is not None:
                return entry.to_response(stale=True)
        if self.matcher.is_api(request.url):
            return offline_api_response(request)
        return service_unavailable(request)

    # ------------------------------------------------------------------ #
    # Sync
    # ------------------------------------------------------------------ #

    async def handle_sync(self, event: SyncEvent) -> Optional[DrainResult]:
        try:
            tag = SyncTag(event.tag)
        except ValueError:
            logger.warning("Ignoring sync for unknown tag: %s", event.tag)
            return None

        result = await self.coordinator.drain(tag)
        if not result.coalesced and await self.mutations.depth(tag) == 0:
            self.registered_tags.discard(tag)
        return result

    async def connectivity_restored(self) -> list[DrainResult]:
        """Drain every registered tag and every tag with queued work, concurrently."""
        tags = set(self.registered_tags)
        tags.update(m.tag for m in await self.mutations.pending())
        ordered = sorted(tags, key=lambda t: t.value)
        return list(
            await asyncio.gather(*(self.handle_sync(SyncEvent(tag.value)) for tag in ordered))
        )

    async def _on_enqueue(self, mutation: QueuedMutation) -> None:
        self.registered_tags.add(mutation.tag)
        await self.coordinator.notify_depth(mutation.tag)

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def handle_message(self, event: MessageEvent) -> Optional[dict[str, Any]]:
        """Apply a control message and return the reply for the sending client.

        Raises:
            InvalidUsageError: If a known message lacks a required field.
        """
        data = event.data or {}
        payload = data.get("payload") or {}
        raw_type = data.get("type")
        try:
            message_type = MessageType(raw_type)
        except ValueError:
            logger.warning("Unknown message type: %s", raw_type)
            return None

        if message_type == MessageType.SKIP_WAITING:
            self.skip_waiting_requested = True
            return {"type": message_type.value, "ok": True}

        if message_type == MessageType.GET_VERSION:
            return {"type": message_type.value, "version": self.config.version}

        if message_type == MessageType.CLEAR_CACHE:
            name = data.get("cacheName") or payload.get("cacheName")
            cleared = await self.cache.clear_named(name) if name else await self.cache.clear()
            return {"type": message_type.value, "cleared": cleared}

        if message_type == MessageType.REGISTER_SYNC:
            raw_tag = data.get("tag") or payload.get("tag")
            try:
                tag = SyncTag(raw_tag)
            except ValueError:
                raise InvalidUsageError(f"REGISTER_SYNC with unknown tag: {raw_tag!r}") from None
            self.registered_tags.add(tag)
            return {"type": message_type.value, "tag": tag.value}

        if message_type == MessageType.CACHE_URLS:
            urls = data.get("urls") or payload.get("urls")
            if not isinstance(urls, list):
                raise InvalidUsageError("CACHE_URLS requires a list of urls")
            cached = await self.cache_urls(urls)
            return {"type": message_type.value, "cached": cached}

        logger.warning("Message type %s is not accepted from clients", message_type.value)
        return None

    async def cache_urls(self, urls: list[str]) -> list[str]:
        """Fetch *urls* concurrently into the runtime tier. Failures are logged and skipped.

        Returns:
            The URLs that were stored.
        """

        async def _one(url: str) -> Optional[str]:
            request = httpx.Request("GET", self._resolve(url))
            try:
                response = await self._fetcher.fetch(
                    request, timeout=self.config.network.default_timeout
                )
            except NetworkError as exc:
                logger.warning("Failed to cache %s: %s", url, exc)
                return None
            if response.status_code != 200:
                logger.warning("Failed to cache %s: HTTP %d", url, response.status_code)
                return None
            stored = await self.cache.put(Tier.RUNTIME, request, response)
            return url if stored is not None else None

        results = await asyncio.gather(*(_one(url) for url in urls))
        return [url for url in results if url is not None]

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def handle_install(self, event: InstallEvent) -> list[str]:
        """Precache the configured URLs into the static tier, best-effort."""
        cached: list[str] = []
        for url in self.config.precache_urls:
            request = httpx.Request("GET", self._resolve(url))
            try:
                response = await self._fetcher.fetch(
                    request, timeout=self.config.network.default_timeout
                )
            except NetworkError as exc:
                logger.warning("Precache of %s failed: %s", url, exc)
                continue
            if response.status_code != 200:
                logger.warning("Precache of %s failed: HTTP %d", url, response.status_code)
                continue
            if await self.cache.put(Tier.STATIC, request, response) is not None:
                cached.append(url)

        self.installed = True
        logger.info("Installed version %s (%d URLs precached)", self.config.version, len(cached))
        return cached

    async def handle_activate(self, event: ActivateEvent) -> list[str]:
        """Delete other versions' partitions and register tags with queued work."""
        dropped = await self.cache.cleanup_old_versions()
        for mutation in await self.mutations.pending():
            self.registered_tags.add(mutation.tag)
        self.activated = True
        logger.info("Activated version %s", self.config.version)
        return dropped

    async def handle_push(self, event: PushEvent) -> Optional[dict[str, Any]]:
        """Turn a push payload into a notification and broadcast ``SHOW_NOTIFICATION``.

        A payload that is not a JSON object is replaced by
        :data:`GENERIC_NOTIFICATION`.
        """
        if not event.data:
            logger.warning("Push event without data")
            return None

        try:
            data = json.loads(event.data)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        except ValueError as exc:
            logger.error("Error handling push notification: %s", exc)
            notification = dict(GENERIC_NOTIFICATION)
        else:
            notification = {
                "title": data.get("title"),
                "body": data.get("body"),
                "icon": "/icon-192x192.png",
                "badge": "/badge-icon.png",
                "data": data.get("data"),
                "requireInteraction": bool(data.get("requireInteraction", False)),
                "actions": data.get("actions") or [],
                "tag": data.get("tag") or "default",
                "timestamp": self._clock(),
            }

        await self.broadcaster.publish(MessageType.SHOW_NOTIFICATION, payload=notification)
        return notification

    async def handle_notification_click(self, event: NotificationClickEvent) -> Optional[str]:
        """Work out which URL a notification click opens and tell the clients.

        ``open_inspection`` opens ``/inspection/<inspectionId>``,
        ``view_details`` and a plain click open ``data["url"]``, ``dismiss``
        opens nothing, and unknown actions open ``/``.  A ``NAVIGATE``
        message is broadcast for any target other than ``/``.
        """
        data = event.data or {}
        action = event.action
        if not action:
            target: Optional[str] = data.get("url") or "/"
        elif action == "open_inspection":
            target = f"/inspection/{data.get('inspectionId', '')}"
        elif action == "view_details":
            target = data.get("url") or "/"
        elif action == "dismiss":
            target = None
        else:
            logger.warning("Unknown notification action: %s", action)
            target = "/"

        if target is not None and target != "/":
            await self.broadcaster.publish(MessageType.NAVIGATE, payload={"url": target})
        if action:
            await self.broadcaster.publish(
                MessageType.NOTIFICATION_ACTION, payload={"action": action, "data": data}
            )
        return target

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    async def maintenance(self) -> dict[str, dict[str, Any]]:
        """Evict every tier to budget and return per-tier stats."""
        return await self.cache.run_maintenance()

    async def wait_background(self) -> None:
        """Wait for outstanding background revalidations and cache writes."""
        await self.strategies.wait_background()
        await self.cache.wait_writes()

    def _resolve(self, url: str) -> httpx.URL:
        return httpx.URL(self.config.origin).join(url)
