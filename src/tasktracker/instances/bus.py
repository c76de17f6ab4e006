"""
Typed broadcast message bus between tab coordinators.

A BroadcastHub is one named channel (a browser origin's BroadcastChannel). Each
coordinator connects its own MessageBus endpoint. Messages posted by one
endpoint reach every other endpoint of the hub, never the sender, in FIFO
order per sender.

Delivery is asynchronous by default: posted messages queue on the hub until
deliver_pending() pumps them. A hub created with synchronous=True delivers
inside post(). Storage writes are not ordered with respect to delivery.
"""

import _thread
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable

from tasktracker.instances.errors import ChannelUnavailableError, CorruptRecordError
from tasktracker.instances.messages import CoordinationMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[CoordinationMessage], None]


class MessageBus(ABC):
    """One participant's view of the broadcast channel."""

    @abstractmethod
    def post(self, message: CoordinationMessage) -> None:
        """Broadcast message to every other participant.

        Raises:
            ChannelUnavailableError: If the bus is closed
        """

    @abstractmethod
    def subscribe(self, handler: MessageHandler) -> None:
        """Register the handler invoked for each incoming message."""

    @abstractmethod
    def close(self) -> None:
        """Detach from the channel; idempotent."""


class InMemoryMessageBus(MessageBus):
    """Endpoint of a BroadcastHub."""

    def __init__(self, hub: "BroadcastHub") -> None:
        self._hub = hub
        self._handlers: list[MessageHandler] = []
        self.closed = False

    def post(self, message: CoordinationMessage) -> None:
        if self.closed:
            raise ChannelUnavailableError(f"Channel '{self._hub.name}' is closed")
        self._hub._publish(self, message.to_dict())

    def subscribe(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._hub._disconnect(self)

    def _receive(self, payload: dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            message = CoordinationMessage.from_dict(payload)
        except CorruptRecordError as e:
            logger.warning(f"Dropping malformed message on '{self._hub.name}': {e}")
            return
        for handler in list(self._handlers):
            try:
                handler(message)
            except KeyboardInterrupt:
                _thread.interrupt_main()
                raise
            except Exception as e:
                logger.error(f"Message handler failed for {message.type.value}: {e}", exc_info=True)


class BroadcastHub:
    """Named in-process broadcast channel.

    Args:
        name: Channel name
        synchronous: Deliver inside post() instead of queueing
    """

    def __init__(self, name: str, synchronous: bool = False) -> None:
        self.name = name
        self.synchronous = synchronous
        self._endpoints: list[InMemoryMessageBus] = []
        self._pending: deque[tuple[InMemoryMessageBus, InMemoryMessageBus, dict[str, Any]]] = deque()
        self._lock = threading.RLock()

    def connect(self) -> InMemoryMessageBus:
        """Create a new endpoint attached to this hub."""
        endpoint = InMemoryMessageBus(self)
        with self._lock:
            self._endpoints.append(endpoint)
        return endpoint

    def _disconnect(self, endpoint: InMemoryMessageBus) -> None:
        with self._lock:
            if endpoint in self._endpoints:
                self._endpoints.remove(endpoint)

    def _publish(self, sender: InMemoryMessageBus, payload: dict[str, Any]) -> None:
        with self._lock:
            # Receivers are fixed at post time, like BroadcastChannel
            for endpoint in self._endpoints:
                if endpoint is not sender:
                    self._pending.append((sender, endpoint, dict(payload)))
        logger.debug(f"Posted {payload.get('type')} from {payload.get('instanceId')} on '{self.name}'")
        if self.synchronous:
            self.deliver_pending()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def deliver_pending(self, limit: int | None = None) -> int:
        """Deliver queued messages in post order.

        Messages posted by handlers during delivery are delivered in the same
        call.

        Args:
            limit: Maximum number of deliveries (None for all)

        Returns:
            Number of messages delivered
        """
        delivered = 0
        while limit is None or delivered < limit:
            with self._lock:
                if not self._pending:
                    break
                _sender, receiver, payload = self._pending.popleft()
            receiver._receive(payload)
            delivered += 1
        return delivered
