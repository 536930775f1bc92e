"""
WebSocket Relay Pool

Transport adapter that talks to relays over WebSocket using the relay wire
protocol (JSON arrays):

    client -> relay: ["EVENT", <message>]
                     ["REQ", <sub id>, <filter>]
                     ["CLOSE", <sub id>]
    relay -> client: ["OK", <message id>, <accepted>, <reason>]
                     ["EVENT", <sub id>, <message>]
                     ["EOSE", <sub id>]
                     ["CLOSED", <sub id>, <reason>]
                     ["NOTICE", <text>]

Connections are opened lazily, one per relay URL, each with a single reader
task. Reconnection and keepalive are left to the caller: a dropped
connection is discarded and reopened on next use.
"""

import asyncio
import json
import logging
from typing import Any
from uuid import uuid4

import websockets
from pydantic import ValidationError

from relayrpc.errors import TransportPublishFailure
from relayrpc.protocol.message import MessageFilter, SignedMessage
from relayrpc.transport.ports import MessageCallback, Subscription, Transport

logger = logging.getLogger(__name__)


class RelayConnection:
    """A single WebSocket connection to one relay."""

    def __init__(
        self,
        url: str,
        pool: "RelayPool",
        open_timeout: float = 10.0,
        publish_timeout: float = 10.0,
    ):
        self.url = url
        self._pool = pool
        self._open_timeout = open_timeout
        self._publish_timeout = publish_timeout
        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._pending_ok: dict[str, asyncio.Future] = {}

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._reader_task is not None and not self._reader_task.done()

    async def connect(self) -> None:
        self._ws = await websockets.connect(self.url, open_timeout=self._open_timeout)
        self._reader_task = asyncio.create_task(
            self._reader_loop(),
            name=f"relay_reader_{self.url}"
        )
        logger.info(f"Connected to relay {self.url}")

    async def send(self, frame: list[Any]) -> None:
        await self._ws.send(json.dumps(frame, ensure_ascii=False))

    async def publish(self, message: SignedMessage) -> None:
        """
        Send a message and wait for the relay's OK.

        Raises:
            ConnectionError: If the relay rejected the message
            asyncio.TimeoutError: If no OK arrived in time
        """
        loop = asyncio.get_running_loop()
        ack = self._pending_ok.setdefault(message.id, loop.create_future())
        try:
            await self.send(["EVENT", message.model_dump()])
            accepted, reason = await asyncio.wait_for(
                asyncio.shield(ack), timeout=self._publish_timeout
            )
        finally:
            self._pending_ok.pop(message.id, None)

        if not accepted:
            raise ConnectionError(reason or "rejected")

    async def _reader_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except websockets.ConnectionClosed as e:
            logger.warning(f"Relay {self.url} connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Relay {self.url} reader error: {e}", exc_info=True)
        finally:
            for future in self._pending_ok.values():
                if not future.done():
                    future.set_exception(ConnectionError(f"connection to {self.url} lost"))
            self._pending_ok.clear()

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning(f"Relay {self.url} sent invalid JSON")
            return

        if not isinstance(frame, list) or not frame:
            return

        kind = frame[0]

        if kind == "EVENT" and len(frame) >= 3:
            try:
                message = SignedMessage.model_validate(frame[2])
            except ValidationError as e:
                logger.warning(f"Relay {self.url} sent malformed event: {e}")
                return
            self._pool._dispatch(frame[1], message)

        elif kind == "OK" and len(frame) >= 3:
            future = self._pending_ok.get(frame[1])
            if future is not None and not future.done():
                reason = frame[3] if len(frame) >= 4 else ""
                future.set_result((bool(frame[2]), reason))

        elif kind == "EOSE":
            logger.debug(f"Relay {self.url} end of stored events for {frame[1:2]}")

        elif kind == "CLOSED":
            logger.warning(f"Relay {self.url} closed subscription: {frame[1:]}")

        elif kind == "NOTICE":
            logger.info(f"Relay {self.url} notice: {frame[1:]}")

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None


class RelayPoolSubscription(Subscription):
    """Subscription registered on several relays under one id."""

    def __init__(
        self,
        subscription_id: str,
        filter: MessageFilter,
        on_event: MessageCallback,
        pool: "RelayPool",
        urls: list[str],
    ):
        super().__init__(subscription_id, filter, on_event)
        self._pool = pool
        self._urls = urls

    def _on_close(self) -> None:
        self._pool._release(self.subscription_id, self._urls)


class RelayPool(Transport):
    """
    WebSocket transport spanning many relays.

    Messages received on a subscription are deduplicated by id, so a
    message stored on every relay is delivered once.
    """

    def __init__(self, open_timeout: float = 10.0, publish_timeout: float = 10.0):
        """
        Initialize the pool.

        Args:
            open_timeout: Seconds to wait for a relay connection
            publish_timeout: Seconds to wait for a relay's OK
        """
        self._open_timeout = open_timeout
        self._publish_timeout = publish_timeout
        self._connections: dict[str, RelayConnection] = {}
        self._subscriptions: dict[str, RelayPoolSubscription] = {}
        self._background: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def _connection(self, url: str) -> RelayConnection:
        async with self._lock:
            connection = self._connections.get(url)
            if connection is not None and connection.is_open:
                return connection

            if connection is not None:
                await connection.close()

            connection = RelayConnection(
                url,
                self,
                open_timeout=self._open_timeout,
                publish_timeout=self._publish_timeout,
            )
            await connection.connect()
            self._connections[url] = connection
            return connection

    async def _publish_one(self, url: str, message: SignedMessage) -> None:
        connection = await self._connection(url)
        await connection.publish(message)

    async def publish(self, endpoints: list[str], message: SignedMessage) -> list[str]:
        results = await asyncio.gather(
            *(self._publish_one(url, message) for url in endpoints),
            return_exceptions=True,
        )

        accepted: list[str] = []
        errors: dict[str, str] = {}
        for url, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                errors[url] = str(result) or result.__class__.__name__
            else:
                accepted.append(url)

        if not accepted:
            raise TransportPublishFailure(errors)

        for url, error in errors.items():
            logger.warning(f"Relay {url} did not accept {message.short_id()}: {error}")

        return accepted

    async def subscribe(
        self,
        endpoints: list[str],
        filter: MessageFilter,
        on_event: MessageCallback,
    ) -> Subscription:
        subscription = RelayPoolSubscription(
            subscription_id=uuid4().hex[:16],
            filter=filter,
            on_event=on_event,
            pool=self,
            urls=list(endpoints),
        )
        self._subscriptions[subscription.subscription_id] = subscription

        request = ["REQ", subscription.subscription_id, filter.to_wire()]
        for url in endpoints:
            try:
                connection = await self._connection(url)
                await connection.send(request)
            except Exception as e:
                logger.warning(f"Could not subscribe on relay {url}: {e}")

        return subscription

    def _dispatch(self, subscription_id: str, message: SignedMessage) -> None:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is not None:
            subscription.deliver(message)

    def _release(self, subscription_id: str, urls: list[str]) -> None:
        """Forget a subscription and send CLOSE to its relays in the background."""
        self._subscriptions.pop(subscription_id, None)

        for url in urls:
            connection = self._connections.get(url)
            if connection is None or not connection.is_open:
                continue
            task = asyncio.ensure_future(self._send_close(connection, subscription_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _send_close(self, connection: RelayConnection, subscription_id: str) -> None:
        try:
            await connection.send(["CLOSE", subscription_id])
        except Exception as e:
            logger.debug(f"CLOSE for {subscription_id} on {connection.url} failed: {e}")

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.close()

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        async with self._lock:
            for connection in self._connections.values():
                await connection.close()
            self._connections.clear()

        logger.info("Relay pool closed")
