"""
Transport Port Interfaces

Abstract contracts for the publish/subscribe relay transport.

- publish() broadcasts a signed message to a set of relays and succeeds as
  soon as at least one relay accepted it
- subscribe() registers a filter on a set of relays and pushes every
  matching message to a callback, once per message id

Callbacks are plain synchronous callables invoked on the event loop. They
must not block; consumers that need to await hand the message to a queue.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable

from relayrpc.protocol.message import MessageFilter, SignedMessage

logger = logging.getLogger(__name__)

# Most recent message ids remembered per subscription for deduplication
DEDUPE_WINDOW = 10_000

MessageCallback = Callable[[SignedMessage], None]


class Subscription(ABC):
    """Handle for an open subscription."""

    def __init__(
        self,
        subscription_id: str,
        filter: MessageFilter,
        on_event: MessageCallback,
        dedupe_window: int = DEDUPE_WINDOW,
    ):
        if dedupe_window < 1:
            raise ValueError("dedupe_window must be at least 1")
        self.subscription_id = subscription_id
        self.filter = filter
        self._on_event = on_event
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._dedupe_window = dedupe_window
        self._closed = False
        self._events_delivered = 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def events_delivered(self) -> int:
        return self._events_delivered

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def deliver(self, message: SignedMessage) -> bool:
        """
        Hand a message to the callback.

        Returns:
            True if delivered, False if closed, filtered out or a duplicate
        """
        if self._closed:
            return False
        if not self.filter.matches(message):
            return False
        if message.id in self._seen:
            return False

        self._seen[message.id] = None
        if len(self._seen) > self._dedupe_window:
            self._seen.popitem(last=False)
        self._events_delivered += 1
        try:
            self._on_event(message)
        except Exception as e:
            logger.error(
                f"Subscription {self.subscription_id} callback failed: {e}",
                exc_info=True,
            )
        return True

    def close(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._on_close()

    @abstractmethod
    def _on_close(self) -> None:
        """Release transport-side resources. Called exactly once."""
        ...


class Transport(ABC):
    """Abstract relay transport."""

    @abstractmethod
    async def publish(self, endpoints: list[str], message: SignedMessage) -> list[str]:
        """
        Publish a signed message.

        Args:
            endpoints: Relay addresses
            message: Message to broadcast

        Returns:
            The endpoints that accepted the message (never empty)

        Raises:
            TransportPublishFailure: If no endpoint accepted it
        """
        ...

    @abstractmethod
    async def subscribe(
        self,
        endpoints: list[str],
        filter: MessageFilter,
        on_event: MessageCallback,
    ) -> Subscription:
        """
        Open a subscription on the given relays.

        Args:
            endpoints: Relay addresses
            filter: Messages to receive
            on_event: Called once per matching message id

        Returns:
            Subscription handle; close() stops delivery
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close all relay connections and subscriptions."""
        ...
