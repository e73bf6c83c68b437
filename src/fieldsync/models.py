"""Canonical Pydantic models shared across all fieldsync modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`TierConfig`, :class:`CacheConfig`, :class:`RouterConfig`,
    :class:`NetworkConfig`, :class:`TagRule`, :class:`QueueConfig`,
    :class:`SyncConfig`, and the aggregate :class:`WorkerConfig`.

**Runtime records** -- persisted by the mutation queue or exchanged with
foreground clients:
    :class:`QueuedMutation` and :class:`ClientMessage`.

Enumerations (:class:`Tier`, :class:`Strategy`, :class:`SyncTag`,
:class:`MessageType`) carry their wire values so they can be compared
directly against strings received from clients.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from fieldsync import __version__

_MB = 1024 * 1024
_DAY = 24 * 60 * 60


class Tier(str, enum.Enum):
    """Named cache partitions, each with its own size budget and TTL."""

    STATIC = "static"
    RUNTIME = "runtime"
    MEDIA = "media"


class Strategy(str, enum.Enum):
    """Caching strategies the request router can delegate to."""

    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"


class SyncTag(str, enum.Enum):
    """Logical categories of queued offline work.

    The values are the tag strings carried by connectivity-restored
    signals.
    """

    INSPECTION_DATA = "inspection-data-sync"
    MEDIA_UPLOAD = "photo-upload-sync"
    CHECKLIST_UPDATE = "checklist-update-sync"
    USER_ACTION = "user-action-sync"
    ANALYTICS = "analytics-sync"
    BATCH_OPERATION = "batch-operation-sync"


class MessageType(str, enum.Enum):
    """Message types exchanged with foreground clients.

    The first group is broadcast by the worker; the second group is
    accepted from clients as control messages.
    """

    SYNC_REQUEST = "SYNC_REQUEST"
    SYNC_ITEM_SUCCEEDED = "SYNC_ITEM_SUCCEEDED"
    SYNC_ITEM_RETRY = "SYNC_ITEM_RETRY"
    SYNC_ITEM_FAILED = "SYNC_ITEM_FAILED"
    SYNC_COMPLETE = "SYNC_COMPLETE"
    QUEUE_DEPTH_CHANGED = "QUEUE_DEPTH_CHANGED"
    NOTIFICATION_ACTION = "NOTIFICATION_ACTION"
    NAVIGATE = "NAVIGATE"
    SHOW_NOTIFICATION = "SHOW_NOTIFICATION"

    SKIP_WAITING = "SKIP_WAITING"
    GET_VERSION = "GET_VERSION"
    CLEAR_CACHE = "CLEAR_CACHE"
    REGISTER_SYNC = "REGISTER_SYNC"
    CACHE_URLS = "CACHE_URLS"


# --- Configuration ---


class TierConfig(BaseModel):
    """Size budget and freshness policy for one cache tier."""

    max_size_bytes: int = Field(gt=0, description="Budget for the sum of stored body sizes")
    ttl_seconds: int = Field(gt=0, description="Entries older than this are stale")


class CacheConfig(BaseModel):
    """Cache tier settings.

    Partition names are derived as ``<prefix><version>-<tier>`` so that a
    new worker version can recognise and delete its predecessors' tiers on
    activation.
    """

    prefix: str = Field(default="fieldsync-v", description="Partition name prefix")
    static: TierConfig = Field(
        default_factory=lambda: TierConfig(max_size_bytes=50 * _MB, ttl_seconds=30 * _DAY)
    )
    runtime: TierConfig = Field(
        default_factory=lambda: TierConfig(max_size_bytes=25 * _MB, ttl_seconds=5 * 60)
    )
    media: TierConfig = Field(
        default_factory=lambda: TierConfig(max_size_bytes=100 * _MB, ttl_seconds=7 * _DAY)
    )
    html_ttl_seconds: int = Field(
        default=_DAY, gt=0, description="TTL for documents stored by stale-while-revalidate"
    )
    key_headers: list[str] = Field(
        default_factory=list,
        description="Request headers that take part in the cache key",
    )

    def for_tier(self, tier: Tier) -> TierConfig:
        """Return the policy for *tier*."""
        return getattr(self, tier.value)


class RouterConfig(BaseModel):
    """URL patterns used to classify requests.

    Extension and prefix lists are matched against the URL path;
    ``ai_service_patterns`` are regular expressions matched against the
    full URL.
    """

    static_extensions: list[str] = Field(
        default_factory=lambda: [
            "js", "mjs", "css", "png", "jpg", "jpeg", "gif", "webp", "svg", "ico",
            "woff", "woff2", "ttf", "eot",
        ]
    )
    media_extensions: list[str] = Field(
        default_factory=lambda: ["png", "jpg", "jpeg", "gif", "webp", "svg", "ico"]
    )
    static_prefixes: list[str] = Field(default_factory=lambda: ["/static/", "/assets/"])
    api_prefixes: list[str] = Field(default_factory=lambda: ["/api/"])
    auth_prefixes: list[str] = Field(default_factory=lambda: ["/auth/"])
    rpc_prefixes: list[str] = Field(default_factory=lambda: ["/rpc/"])
    backend_host: Optional[str] = Field(
        default=None, description="Host of the Backend API; every request to it is an API call"
    )
    ai_service_patterns: list[str] = Field(
        default_factory=lambda: [r"/functions/v1/ai-", r"/ai/analy[sz]e"],
        description="AI Analysis Service URLs: network-first, never cached or queued",
    )


class NetworkConfig(BaseModel):
    """Timeouts for network attempts. There is no in-call retry."""

    network_first_timeout: float = Field(default=10.0, gt=0)
    default_timeout: float = Field(default=30.0, gt=0)
    verify_ssl: bool = True


class TagRule(BaseModel):
    """Maps mutating request URLs matching ``pattern`` to a :class:`SyncTag`."""

    pattern: str
    tag: SyncTag


class QueueConfig(BaseModel):
    """Which failed mutations are queued, and under which tag."""

    excluded_patterns: list[str] = Field(
        default_factory=lambda: [r"/auth/"],
        description="Mutations to these URLs fail immediately instead of being queued",
    )
    tag_rules: list[TagRule] = Field(
        default_factory=lambda: [
            TagRule(pattern=r"/inspections?\b", tag=SyncTag.INSPECTION_DATA),
            TagRule(pattern=r"/(media|photos?|uploads?)\b", tag=SyncTag.MEDIA_UPLOAD),
            TagRule(pattern=r"/checklists?\b", tag=SyncTag.CHECKLIST_UPDATE),
            TagRule(pattern=r"/analytics\b", tag=SyncTag.ANALYTICS),
            TagRule(pattern=r"/batch\b", tag=SyncTag.BATCH_OPERATION),
        ]
    )
    default_tag: SyncTag = SyncTag.USER_ACTION


class SyncConfig(BaseModel):
    """Replay budget per sync tag."""

    max_retries: dict[SyncTag, int] = Field(
        default_factory=lambda: {
            SyncTag.INSPECTION_DATA: 5,
            SyncTag.MEDIA_UPLOAD: 5,
            SyncTag.CHECKLIST_UPDATE: 3,
            SyncTag.USER_ACTION: 3,
            SyncTag.BATCH_OPERATION: 2,
            SyncTag.ANALYTICS: 1,
        }
    )
    default_max_retries: int = Field(default=3, ge=1)

    def max_retries_for(self, tag: SyncTag) -> int:
        """Return the replay budget for *tag*."""
        return self.max_retries.get(tag, self.default_max_retries)


class WorkerConfig(BaseModel):
    """Complete worker configuration persisted at ``~/.config/fieldsync/config.json``.

    Loaded by :func:`~fieldsync.config.load_worker_config` and layered with
    project config and environment overrides by
    :func:`~fieldsync.config.resolve_config`.
    """

    version: str = __version__
    precache_urls: list[str] = Field(default_factory=lambda: ["/", "/manifest.json"])
    origin: str = Field(
        default="http://localhost", description="Origin used to resolve relative precache URLs"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


# --- Runtime records ---


class QueuedMutation(BaseModel):
    """A failed mutating request waiting for replay.

    Persisted by :class:`~fieldsync.mutations.OfflineMutationQueue` and
    removed on successful replay or once ``retry_count`` reaches
    ``max_retries``.
    """

    id: int
    url: str
    method: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None
    tag: SyncTag
    enqueued_at: int = Field(description="Epoch milliseconds")
    retry_count: int = 0
    max_retries: int = Field(ge=1)
    last_error: Optional[str] = None


class ClientMessage(BaseModel):
    """Ephemeral status event sent to connected foreground clients."""

    type: MessageType
    tag: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    timestamp: int

    def to_wire(self) -> dict[str, Any]:
        """Serialise to the plain dict clients receive."""
        return self.model_dump(mode="json", exclude_none=True)
