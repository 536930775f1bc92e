"""
RPC Client

Correlated calls on top of a broadcast transport.

call() flow:
1. Build an RpcRequest with a fresh correlation id
2. Encrypt it for the server and sign it
3. Subscribe to replies addressed to us from the server, starting slightly
   before the request's timestamp to tolerate clock skew
4. Start the timeout, then publish to every relay
5. Settle on the first reply whose id matches; other replies are ignored

Subscribing before publishing means a fast reply cannot be missed.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from relayrpc.config import DEFAULT_RELAYS, RelaySettings
from relayrpc.crypto.keys import generate_secret_key, normalize_secret_key, public_to_hex
from relayrpc.crypto.ports import MessageCrypto
from relayrpc.crypto.secp256k1 import Secp256k1Crypto
from relayrpc.errors import DecryptionFailure, RemoteError
from relayrpc.protocol.envelope import create_request, parse_response
from relayrpc.protocol.message import (
    ENCRYPTED_DIRECT_MESSAGE,
    FilterBuilder,
    MessageFilter,
    SignedMessage,
    build_filter,
    validate_filter_builder,
)
from relayrpc.rpc.emitter import ReplyEmitter
from relayrpc.rpc.pending import PendingCall
from relayrpc.transport.ports import Subscription, Transport
from relayrpc.transport.relay import RelayPool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_CLOCK_SKEW = 10


@dataclass(frozen=True)
class MessageSent:
    """Outcome of send_message() without waiting."""
    success: bool
    timestamp: int
    message_id: str


@dataclass(frozen=True)
class MessageReply:
    """Outcome of send_message(wait_for_reply=True)."""
    success: bool
    reply: str
    sender: str
    timestamp: int
    message_id: str


@dataclass(frozen=True)
class IncomingMessage:
    """A plain text message delivered by listen_for_messages()."""
    text: str
    sender: str
    timestamp: int
    message_id: str


def _validate_tags(tags: Any) -> list[list[str]]:
    if not isinstance(tags, (list, tuple)):
        raise TypeError("tags must be a list")
    for tag in tags:
        if not isinstance(tag, (list, tuple)) or not all(isinstance(v, str) for v in tag):
            raise TypeError(f"Each tag must be a list of strings, got {tag!r}")
    return [list(tag) for tag in tags]


class RpcClient:
    """
    Client side of the RPC protocol.

    Also sends and receives plain text direct messages.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        secret_key: bytes | str | None = None,
        server_public_key: str | None = None,
        relays: list[str] | None = None,
        crypto: MessageCrypto | None = None,
        public_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        tags: list[list[str]] | None = None,
        reply_filter: FilterBuilder | None = None,
        message_reply_filter: FilterBuilder | None = None,
        incoming_filter: FilterBuilder | None = None,
    ):
        """
        Initialize the client.

        Args:
            transport: Relay transport (a RelayPool is created if omitted)
            secret_key: Client secret key; an ephemeral one is generated if omitted
            server_public_key: Identity that call() talks to
            relays: Relay URLs
            crypto: Encryption/signing provider
            public_key: Expected public key, checked against secret_key
            timeout: Default timeout in seconds for call() and send_message()
            clock_skew: Seconds subtracted from a reply subscription's lower bound
            tags: Extra tags appended to every outbound message
            reply_filter: Override for call() reply subscriptions
            message_reply_filter: Override for send_message() reply
                subscriptions (defaults to reply_filter)
            incoming_filter: Override for listen_for_messages()

        Raises:
            InvalidKeyFormat: If a key cannot be normalized
            ValueError: If public_key does not belong to secret_key
            TypeError: If a filter override is not callable
        """
        self._crypto = crypto or Secp256k1Crypto()

        if secret_key is None:
            secret = generate_secret_key()
            logger.info("No secret key configured, using an ephemeral identity")
        else:
            secret = normalize_secret_key(secret_key)

        self.public_key = self._crypto.public_key(secret)
        if public_key is not None and public_to_hex(public_key) != self.public_key:
            raise ValueError("public_key does not match secret_key")

        self.server_public_key = public_to_hex(server_public_key) if server_public_key else None
        self.relays = list(relays) if relays else list(DEFAULT_RELAYS)
        self.timeout = timeout
        self.clock_skew = clock_skew

        self._owns_transport = transport is None
        self._transport = transport or RelayPool()
        self._emitter = ReplyEmitter(self._transport, self._crypto, secret, self.relays)

        self._tags = _validate_tags(tags or [])
        self._reply_filter = validate_filter_builder(reply_filter)
        self._message_reply_filter = validate_filter_builder(message_reply_filter or reply_filter)
        self._incoming_filter = validate_filter_builder(incoming_filter)

        self._pending: dict[str, PendingCall] = {}
        self._listeners: list[Subscription] = []
        self._callback_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        transport: Transport | None = None,
        **kwargs: Any,
    ) -> "RpcClient":
        return cls(
            transport=transport,
            secret_key=settings.secret_key,
            server_public_key=settings.server_public_key,
            relays=settings.relays,
            timeout=settings.timeout,
            clock_skew=settings.clock_skew,
            **kwargs,
        )

    # === Configuration ===

    @property
    def tags(self) -> list[list[str]]:
        return [list(tag) for tag in self._tags]

    def set_tags(self, tags: list[list[str]] | None = None) -> None:
        """Replace the extra tags appended to outbound messages."""
        self._tags = _validate_tags(tags if tags is not None else [])

    def set_reply_filter(self, builder: FilterBuilder | None) -> None:
        self._reply_filter = validate_filter_builder(builder)

    def set_message_reply_filter(self, builder: FilterBuilder | None) -> None:
        self._message_reply_filter = validate_filter_builder(builder)

    def set_incoming_filter(self, builder: FilterBuilder | None) -> None:
        self._incoming_filter = validate_filter_builder(builder)

    @property
    def pending_calls(self) -> int:
        """Number of calls still waiting for a reply."""
        return len(self._pending)

    # === Lifecycle ===

    async def connect(self) -> None:
        # Relay connections are opened lazily by the transport
        logger.info(f"Client ready to use relays: {', '.join(self.relays)}")

    async def close(self) -> None:
        """Cancel pending calls and close listeners, plus the transport if owned."""
        for pending in list(self._pending.values()):
            pending.cancel()
        self._pending.clear()

        for subscription in self._listeners:
            subscription.close()
        self._listeners.clear()

        if self._owns_transport:
            await self._transport.close()

    # === RPC ===

    def _track(self, pending: PendingCall) -> None:
        self._pending[pending.correlation_id] = pending

    def _untrack(self, pending: PendingCall) -> None:
        self._pending.pop(pending.correlation_id, None)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Call a method on the server and return its result.

        Raises:
            RequestTimeout: If no matching reply arrived in time
            RemoteError: If the server answered with an error
            TransportPublishFailure: If no relay accepted the request
            ValueError: If no server_public_key is configured
        """
        if not self.server_public_key:
            raise ValueError("server_public_key is required for call()")

        server = self.server_public_key
        timeout = timeout if timeout is not None else self.timeout
        request = create_request(method, params)
        message = self._emitter.seal(server, request.model_dump_json(), tags=self._tags)

        pending = PendingCall(
            request.id,
            timeout,
            f"Request timeout after {int(timeout * 1000)}ms",
        )

        def on_reply(reply: SignedMessage) -> None:
            if pending.settled:
                return
            if reply.recipient != self.public_key or reply.pubkey != server:
                return

            try:
                response = parse_response(self._emitter.decrypt(server, reply.content))
            except (DecryptionFailure, ValidationError) as e:
                logger.warning(f"Error decrypting reply {reply.short_id()}: {e}")
                return

            if response.id != request.id:
                return

            if response.is_error:
                pending.fail(RemoteError(response.error, request.id))
            else:
                pending.resolve(response.result)

        self._track(pending)
        try:
            try:
                reply_filter = build_filter(
                    MessageFilter(
                        kinds={ENCRYPTED_DIRECT_MESSAGE},
                        recipients={self.public_key},
                        authors={server},
                        since=message.created_at - self.clock_skew,
                    ),
                    self._reply_filter,
                    {"method": method, "params": dict(params or {}), "request_id": request.id},
                )
                pending.attach(await self._transport.subscribe(self.relays, reply_filter, on_reply))
                pending.start_timer()
                await self._emitter.publish(message)
                logger.info(f"Sent {method} ({request.id})")
            except Exception as e:
                pending.fail(e)

            return await pending.wait()
        finally:
            pending.cancel()
            self._untrack(pending)

    # === Plain messages ===

    async def send_message(
        self,
        content: str,
        recipient: str,
        wait_for_reply: bool = False,
        timeout: float | None = None,
    ) -> MessageSent | MessageReply:
        """
        Send a plain text direct message.

        With wait_for_reply, waits for the first message back from the
        recipient. A reply that references a different message is ignored; a
        reply with no reference at all is accepted.

        Raises:
            RequestTimeout: If waiting and no reply arrived in time
            TransportPublishFailure: If no relay accepted the message
        """
        recipient = public_to_hex(recipient)
        message = self._emitter.seal(recipient, content, tags=self._tags)

        if not wait_for_reply:
            await self._emitter.publish(message)
            logger.info(f"Message sent to {recipient[:8]}")
            return MessageSent(success=True, timestamp=message.created_at, message_id=message.id)

        timeout = timeout if timeout is not None else self.timeout
        pending = PendingCall(
            message.id,
            timeout,
            f"Reply timeout after {int(timeout * 1000)}ms",
        )

        def on_reply(reply: SignedMessage) -> None:
            if pending.settled:
                return
            if reply.recipient != self.public_key or reply.pubkey != recipient:
                logger.debug(f"Skipping {reply.short_id()}: recipient or author mismatch")
                return

            reference = reply.reply_to
            if reference is not None and reference != message.id:
                logger.debug(
                    f"Skipping {reply.short_id()}: references {reference[:8]}, "
                    f"expected {message.short_id()}"
                )
                return
            if reference is None:
                logger.warning(f"Reply {reply.short_id()} has no e tag, accepting anyway")

            try:
                text = self._emitter.decrypt(recipient, reply.content)
            except DecryptionFailure as e:
                logger.warning(f"Error decrypting reply {reply.short_id()}: {e}")
                return

            pending.resolve(MessageReply(
                success=True,
                reply=text,
                sender=recipient,
                timestamp=reply.created_at,
                message_id=reply.id,
            ))

        self._track(pending)
        try:
            try:
                reply_filter = build_filter(
                    MessageFilter(
                        kinds={ENCRYPTED_DIRECT_MESSAGE},
                        recipients={self.public_key},
                        authors={recipient},
                        since=message.created_at,
                    ),
                    self._message_reply_filter,
                    {
                        "recipient": recipient,
                        "sent_message_id": message.id,
                        "sent_timestamp": message.created_at,
                    },
                )
                pending.attach(await self._transport.subscribe(self.relays, reply_filter, on_reply))
                pending.start_timer()
                await self._emitter.publish(message)
                logger.info(f"Message sent to {recipient[:8]}, waiting for reply...")
            except Exception as e:
                logger.error(f"Error sending message: {e}")
                pending.fail(e)

            return await pending.wait()
        finally:
            pending.cancel()
            self._untrack(pending)

    async def listen_for_messages(
        self,
        sender: str,
        on_message: Callable[[IncomingMessage], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Subscription:
        """
        Subscribe to plain text messages from `sender`.

        `on_message` may be a plain function or a coroutine function.
        Messages that cannot be decrypted are logged and passed to `on_error`.

        Returns:
            Subscription; close() stops delivery
        """
        sender = public_to_hex(sender)

        def on_event(event: SignedMessage) -> None:
            if event.recipient != self.public_key or event.pubkey != sender:
                return

            try:
                text = self._emitter.decrypt(sender, event.content)
            except DecryptionFailure as e:
                logger.warning(f"Error decrypting message {event.short_id()}: {e}")
                if on_error is not None:
                    self._run_callback(on_error, e)
                return

            self._run_callback(on_message, IncomingMessage(
                text=text,
                sender=sender,
                timestamp=event.created_at,
                message_id=event.id,
            ))

        incoming_filter = build_filter(
            MessageFilter(
                kinds={ENCRYPTED_DIRECT_MESSAGE},
                recipients={self.public_key},
                authors={sender},
            ),
            self._incoming_filter,
            {"sender": sender},
        )
        subscription = await self._transport.subscribe(self.relays, incoming_filter, on_event)
        self._listeners.append(subscription)
        return subscription

    def _run_callback(self, callback: Callable[..., Any], *args: Any) -> None:
        result = callback(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)
