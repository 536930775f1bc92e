"""
RPC Server

Wires the server pipeline together:

    transport subscription -> inbox -> EventDispatcher
        immediate: RequestProcessor
        queued:    EventStorage -> QueueProcessor -> RequestProcessor

Transport callbacks only push messages onto an asyncio.Queue inbox, so
nothing awaits inside a transport callback. A single consumer task drains
it: in immediate mode each message gets its own tracked task, so a slow
handler never holds up the requests behind it; in queued mode the consumer
only enqueues.

Lifecycle signals: "started", "stopped", "error" (reply publish failures).
"""

import asyncio
import logging
from typing import Any, Iterable, Mapping

from relayrpc.config import DEFAULT_RELAYS, ProcessingMode, RelaySettings
from relayrpc.crypto.keys import normalize_secret_key, public_to_hex
from relayrpc.crypto.ports import MessageCrypto
from relayrpc.crypto.secp256k1 import Secp256k1Crypto
from relayrpc.events import EventEmitter, LifecycleEvent, Listener
from relayrpc.policy.engine import AuthConfig, AuthorizationEvaluator
from relayrpc.policy.whitelist import WhitelistProvider, WhitelistStore
from relayrpc.protocol.message import ENCRYPTED_DIRECT_MESSAGE, MessageFilter, SignedMessage, now_seconds
from relayrpc.queue.factory import create_event_storage
from relayrpc.queue.memory import InMemoryEventStorage
from relayrpc.queue.ports import EventStorage
from relayrpc.queue.processor import DEFAULT_EVENT_TIMEOUT, MAX_PROCESSING_RATE, QueueProcessor
from relayrpc.registry.registry import MethodHandler, MethodRegistration, MethodRegistry
from relayrpc.rpc.dispatcher import EventDispatcher
from relayrpc.rpc.emitter import ReplyEmitter
from relayrpc.rpc.processing import RequestProcessor
from relayrpc.transport.ports import Subscription, Transport
from relayrpc.transport.relay import RelayPool

logger = logging.getLogger(__name__)


class RpcServer:
    """
    Serves registered methods to authorized senders.

    Usage:
        server = RpcServer(transport, secret_key=key, relays=[...])
        server.register_method("add", add_handler)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        transport: Transport | None = None,
        secret_key: bytes | str | None = None,
        relays: list[str] | None = None,
        crypto: MessageCrypto | None = None,
        public_key: str | None = None,
        processing_mode: ProcessingMode | str = ProcessingMode.IMMEDIATE,
        event_storage: EventStorage | None = None,
        processing_rate: float | None = MAX_PROCESSING_RATE,
        event_timeout: float = DEFAULT_EVENT_TIMEOUT,
        allowed_authors: Iterable[Any] | None = None,
        whitelist_provider: WhitelistProvider | None = None,
    ):
        """
        Initialize the server.

        Args:
            transport: Relay transport (a RelayPool is created if omitted)
            secret_key: Server secret key (required)
            relays: Relay URLs
            crypto: Encryption/signing provider
            public_key: Expected public key, checked against secret_key
            processing_mode: "immediate" or "queued"
            event_storage: Storage for queued mode (in-memory if omitted)
            processing_rate: Queue ticks per second, capped at 3
            event_timeout: Seconds each queued item may run
            allowed_authors: Initial global whitelist
            whitelist_provider: Function returning the current whitelist;
                overrides allowed_authors while set

        Raises:
            ValueError: If secret_key is missing, public_key does not match,
                or processing_mode is unknown
        """
        if secret_key is None:
            raise ValueError("secret_key is required")

        self._crypto = crypto or Secp256k1Crypto()
        secret = normalize_secret_key(secret_key)
        self.public_key = self._crypto.public_key(secret)
        if public_key is not None and public_to_hex(public_key) != self.public_key:
            raise ValueError("public_key does not match secret_key")

        self.relays = list(relays) if relays else list(DEFAULT_RELAYS)
        self.processing_mode = ProcessingMode(processing_mode)

        self._owns_transport = transport is None
        self._transport = transport or RelayPool()
        self._signals = EventEmitter()

        self.whitelist = WhitelistStore(allowed_authors, whitelist_provider)
        self.registry = MethodRegistry()
        self.emitter = ReplyEmitter(
            self._transport,
            self._crypto,
            secret,
            self.relays,
            on_error=lambda e: self._signals.emit(LifecycleEvent.ERROR, e),
        )
        self.processor = RequestProcessor(
            self.emitter,
            self.registry,
            AuthorizationEvaluator(self.whitelist),
            self.whitelist,
        )

        self.storage: EventStorage | None = None
        self.queue_processor: QueueProcessor | None = None
        if self.processing_mode == ProcessingMode.QUEUED:
            self.storage = event_storage or InMemoryEventStorage()
            self.queue_processor = QueueProcessor(
                self.storage,
                self.processor.process_queued,
                processing_rate=processing_rate,
                event_timeout=event_timeout,
            )

        self.dispatcher = EventDispatcher(
            self.public_key,
            self.whitelist,
            self.processor,
            mode=self.processing_mode,
            storage=self.storage,
        )

        self._inbox: asyncio.Queue[SignedMessage] | None = None
        self._consumer: asyncio.Task | None = None
        self._handlers: set[asyncio.Task] = set()
        self._subscription: Subscription | None = None
        self._listening = False

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        transport: Transport | None = None,
        **kwargs: Any,
    ) -> "RpcServer":
        """Build a server from RelaySettings, creating queued-mode storage from them."""
        storage = kwargs.pop("event_storage", None)
        if storage is None and settings.processing_mode == ProcessingMode.QUEUED:
            storage = create_event_storage(settings.storage_backend, settings.redis_url)

        return cls(
            transport=transport,
            secret_key=settings.secret_key,
            relays=settings.relays,
            processing_mode=settings.processing_mode,
            event_storage=storage,
            processing_rate=settings.processing_rate,
            event_timeout=settings.event_timeout,
            allowed_authors=settings.allowed_authors,
            **kwargs,
        )

    # === Methods ===

    def register_method(
        self,
        name: str,
        handler: MethodHandler,
        auth_config: AuthConfig | Mapping[str, Any] | None = None,
    ) -> MethodRegistration:
        """Register a handler(params, message, message_id, sender). See MethodRegistry.register."""
        return self.registry.register(name, handler, auth_config)

    # === Whitelist ===

    def add_to_whitelist(self, *keys: Any) -> None:
        self.whitelist.add(*keys)

    def remove_from_whitelist(self, *keys: Any) -> None:
        self.whitelist.remove(*keys)

    def clear_whitelist(self) -> None:
        self.whitelist.clear()

    def set_whitelist_provider(self, provider: WhitelistProvider | None) -> None:
        """Install a provider that overrides the static whitelist, or remove it with None."""
        self.whitelist.set_provider(provider)

    async def get_whitelist(self) -> frozenset[str] | None:
        return await self.whitelist.get_whitelist()

    async def is_in_whitelist(self, sender: Any) -> bool:
        return await self.whitelist.is_allowed(public_to_hex(sender))

    # === Signals ===

    def on(self, event: str | LifecycleEvent, listener: Listener):
        """Listen for "started", "stopped" or "error". Returns an unsubscribe function."""
        return self._signals.on(event, listener)

    def off(self, event: str | LifecycleEvent, listener: Listener) -> None:
        self._signals.off(event, listener)

    # === Lifecycle ===

    @property
    def is_listening(self) -> bool:
        return self._listening

    async def start(self) -> None:
        """Subscribe to requests addressed to this server and start processing."""
        if self._listening:
            logger.info("Already listening for messages")
            return

        logger.info(f"Starting RPC server on relays: {', '.join(self.relays)}")

        self._inbox = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume(), name="rpc_server_inbox")

        request_filter = MessageFilter(
            kinds={ENCRYPTED_DIRECT_MESSAGE},
            recipients={self.public_key},
            since=now_seconds(),
        )
        try:
            self._subscription = await self._transport.subscribe(
                self.relays, request_filter, self._inbox.put_nowait
            )
        except Exception:
            await self._stop_consumer()
            raise

        if self.queue_processor is not None:
            await self.queue_processor.start()

        self._listening = True
        logger.info(f"Subscribed to all relays (mode: {self.processing_mode.value})")
        self._signals.emit(LifecycleEvent.STARTED)

    async def _consume(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                if self.processing_mode == ProcessingMode.IMMEDIATE:
                    task = asyncio.create_task(self.dispatcher.on_event(message))
                    self._handlers.add(task)
                    task.add_done_callback(self._handlers.discard)
                else:
                    await self.dispatcher.on_event(message)
            finally:
                self._inbox.task_done()

    async def _stop_consumer(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None
        self._inbox = None

    async def _drain_handlers(self, timeout: float) -> None:
        """Wait for in-flight immediate-mode requests, cancelling stragglers."""
        if not self._handlers:
            return
        logger.info(f"Waiting for {len(self._handlers)} in-flight requests")
        _, pending = await asyncio.wait(set(self._handlers), timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} requests still running after {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._handlers.clear()

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop receiving, finish in-flight work, release resources.

        Args:
            timeout: Max seconds to wait for the in-flight queue batch and
                for immediate-mode requests still being handled
        """
        if not self._listening:
            return
        self._listening = False

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        if self.queue_processor is not None:
            await self.queue_processor.stop(timeout=timeout)

        await self._stop_consumer()
        await self._drain_handlers(timeout)

        if self._owns_transport:
            await self._transport.close()

        logger.info("RPC server stopped")
        self._signals.emit(LifecycleEvent.STOPPED)

    async def health_check(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "listening": self._listening,
            "public_key": self.public_key,
            "processing_mode": self.processing_mode.value,
            "methods": self.registry.names,
            "inbox_size": self._inbox.qsize() if self._inbox is not None else 0,
            "in_flight": len(self._handlers),
            "dispatcher": self.dispatcher.stats_dict(),
        }
        if self.queue_processor is not None:
            health["queue"] = await self.queue_processor.health_check()
        return health
