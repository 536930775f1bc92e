"""
In-Memory Relay Transport

A hub of named in-process relays. Suitable for development, testing and
single-process deployments where client and server share an event loop.

Features:
- Per-relay accept/reject switch to exercise partial publish failure
- Stored history replayed to new subscriptions (bounded by the filter)
- Optional signature verification on publish, like a real relay
- Optional drop rule for messages that are accepted but never delivered
"""

import asyncio
import logging
from typing import Callable
from uuid import uuid4

from relayrpc.errors import TransportPublishFailure
from relayrpc.protocol.message import MessageFilter, SignedMessage
from relayrpc.transport.ports import MessageCallback, Subscription, Transport

logger = logging.getLogger(__name__)


class RelayRejected(Exception):
    """A relay refused a message."""
    pass


class InMemoryRelay:
    """A single in-process relay."""

    def __init__(
        self,
        url: str,
        verifier: Callable[[SignedMessage], bool] | None = None,
        max_history: int = 10000,
    ):
        self.url = url
        self._verifier = verifier
        self._max_history = max_history
        self._accepting = True
        self._reject_reason = "relay offline"
        self._history: list[SignedMessage] = []
        self._ids: set[str] = set()
        self._subscriptions: dict[str, "InMemorySubscription"] = {}
        self.drop_rule: Callable[[SignedMessage], bool] | None = None

    def set_accepting(self, accepting: bool, reason: str = "relay offline") -> None:
        """Toggle whether this relay accepts publishes."""
        self._accepting = accepting
        self._reject_reason = reason

    @property
    def history(self) -> list[SignedMessage]:
        return list(self._history)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def accept(self, message: SignedMessage) -> None:
        """
        Store and fan out a message.

        Raises:
            RelayRejected: If the relay is not accepting or the signature is bad
        """
        if not self._accepting:
            raise RelayRejected(self._reject_reason)

        if self._verifier is not None and not self._verifier(message):
            raise RelayRejected("invalid: bad signature")

        if message.id in self._ids:
            return

        self._ids.add(message.id)
        self._history.append(message)
        if len(self._history) > self._max_history:
            dropped = self._history.pop(0)
            self._ids.discard(dropped.id)

        if self.drop_rule is not None and self.drop_rule(message):
            logger.debug(f"Relay {self.url} dropping {message.short_id()}")
            return

        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions.values()):
            loop.call_soon(subscription.deliver, message)

    def attach(self, subscription: "InMemorySubscription") -> None:
        self._subscriptions[subscription.subscription_id] = subscription

        loop = asyncio.get_running_loop()
        for message in self._history:
            if subscription.filter.matches(message):
                loop.call_soon(subscription.deliver, message)

    def detach(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)


class InMemoryRelayHub:
    """
    Registry of in-memory relays, keyed by URL.

    Relays are created on first use, so any URL can be used as an endpoint.
    """

    def __init__(self, verifier: Callable[[SignedMessage], bool] | None = None):
        self._verifier = verifier
        self._relays: dict[str, InMemoryRelay] = {}

    def relay(self, url: str) -> InMemoryRelay:
        if url not in self._relays:
            self._relays[url] = InMemoryRelay(url, verifier=self._verifier)
        return self._relays[url]

    @property
    def relays(self) -> dict[str, InMemoryRelay]:
        return dict(self._relays)

    def transport(self) -> "InMemoryTransport":
        return InMemoryTransport(self)


class InMemorySubscription(Subscription):
    """Subscription spanning one or more in-memory relays."""

    def __init__(
        self,
        subscription_id: str,
        filter: MessageFilter,
        on_event: MessageCallback,
        relays: list[InMemoryRelay],
        registry: dict[str, "InMemorySubscription"],
    ):
        super().__init__(subscription_id, filter, on_event)
        self._relays = relays
        self._registry = registry

    def _on_close(self) -> None:
        for relay in self._relays:
            relay.detach(self.subscription_id)
        self._registry.pop(self.subscription_id, None)


class InMemoryTransport(Transport):
    """Transport view of an InMemoryRelayHub."""

    def __init__(self, hub: InMemoryRelayHub | None = None):
        self.hub = hub or InMemoryRelayHub()
        self._subscriptions: dict[str, InMemorySubscription] = {}
        self._closed = False

    async def publish(self, endpoints: list[str], message: SignedMessage) -> list[str]:
        accepted: list[str] = []
        errors: dict[str, str] = {}

        for url in endpoints:
            try:
                self.hub.relay(url).accept(message)
                accepted.append(url)
            except RelayRejected as e:
                errors[url] = str(e)

        if not accepted:
            raise TransportPublishFailure(errors)

        for url, error in errors.items():
            logger.warning(f"Relay {url} rejected {message.short_id()}: {error}")

        return accepted

    async def subscribe(
        self,
        endpoints: list[str],
        filter: MessageFilter,
        on_event: MessageCallback,
    ) -> Subscription:
        relays = [self.hub.relay(url) for url in endpoints]
        subscription = InMemorySubscription(
            subscription_id=uuid4().hex,
            filter=filter,
            on_event=on_event,
            relays=relays,
            registry=self._subscriptions,
        )
        for relay in relays:
            relay.attach(subscription)

        self._subscriptions[subscription.subscription_id] = subscription
        return subscription

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.close()
        self._subscriptions.clear()
        self._closed = True
