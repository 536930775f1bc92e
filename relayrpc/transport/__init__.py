# Transport Layer
# Publish/subscribe relay transports for signed messages
# The RPC core depends only on the ports; adapters are swappable

from relayrpc.transport.ports import MessageCallback, Subscription, Transport
from relayrpc.transport.memory import (
    InMemoryRelay,
    InMemoryRelayHub,
    InMemoryTransport,
    RelayRejected,
)
from relayrpc.transport.relay import RelayPool

__all__ = [
    "MessageCallback",
    "Subscription",
    "Transport",
    "InMemoryRelay",
    "InMemoryRelayHub",
    "InMemoryTransport",
    "RelayRejected",
    "RelayPool",
]
