"""Status messages to connected foreground clients.

Delivery is best-effort and live only: a message reaches the clients
connected at the moment it is sent.  Nothing is persisted or replayed to
clients that connect later.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from fieldsync.clock import Clock, now_ms
from fieldsync.models import ClientMessage, MessageType

logger = logging.getLogger(__name__)


class ClientBroadcaster(ABC):
    """Fan-out of :class:`~fieldsync.models.ClientMessage` to connected clients.

    Args:
        clock: Source of the message timestamps set by :meth:`publish`.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or now_ms

    @abstractmethod
    def connect(self, client_id: str) -> Any:
        """Register *client_id* as connected."""

    @abstractmethod
    def disconnect(self, client_id: str) -> None:
        """Forget *client_id*. Unknown ids are ignored."""

    @abstractmethod
    async def send(self, message: ClientMessage) -> int:
        """Deliver *message* to every connected client.

        Returns:
            The number of clients the message was delivered to.
        """

    async def publish(
        self,
        message_type: MessageType,
        tag: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> int:
        """Build a timestamped message and :meth:`send` it."""
        message = ClientMessage(
            type=message_type,
            tag=tag,
            payload=payload,
            timestamp=self._clock(),
        )
        return await self.send(message)


class InMemoryBroadcaster(ClientBroadcaster):
    """Delivers wire dicts to one :class:`asyncio.Queue` per connected client.

    Each inbox holds at most ``max_pending`` messages; when a client falls
    that far behind, its oldest unread message is dropped.
    """

    def __init__(self, clock: Optional[Clock] = None, max_pending: int = 100) -> None:
        super().__init__(clock)
        self._max_pending = max_pending
        self._clients: dict[str, asyncio.Queue[dict[str, Any]]] = {}

    def connect(self, client_id: str) -> asyncio.Queue[dict[str, Any]]:
        """Connect *client_id* and return its inbox. Reconnecting keeps the same inbox."""
        inbox = self._clients.get(client_id)
        if inbox is None:
            inbox = asyncio.Queue(maxsize=self._max_pending)
            self._clients[client_id] = inbox
        return inbox

    def disconnect(self, client_id: str) -> None:
        self._clients.pop(client_id, None)

    @property
    def clients(self) -> list[str]:
        return list(self._clients)

    async def send(self, message: ClientMessage) -> int:
        wire = message.to_wire()
        for client_id, inbox in self._clients.items():
            if inbox.full():
                dropped = inbox.get_nowait()
                logger.warning(
                    "Inbox of client %s is full, dropping %s", client_id, dropped["type"]
                )
            inbox.put_nowait(dict(wire))
        logger.debug("Broadcast %s to %d clients", message.type.value, len(self._clients))
        return len(self._clients)


class CallbackBroadcaster(ClientBroadcaster):
    """Hands every message to a single callback. Used by the CLI to print progress.

    The callback counts as one client that is connected for the lifetime of
    the broadcaster.
    """

    def __init__(
        self,
        callback: Callable[[dict[str, Any]], None],
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(clock)
        self._callback = callback

    def connect(self, client_id: str) -> None:
        return None

    def disconnect(self, client_id: str) -> None:
        return None

    async def send(self, message: ClientMessage) -> int:
        self._callback(message.to_wire())
        return 1
