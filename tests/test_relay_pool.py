import asyncio
import json

import pytest

from relayrpc.errors import TransportPublishFailure
from relayrpc.protocol import MessageFilter
from relayrpc.transport import RelayPool
from relayrpc.transport import relay as relay_module

from .conftest import make_message

URLS = ["wss://one.test", "wss://two.test"]


class ScriptedSocket:
    """WebSocket stand-in that answers EVENT frames with OK and records everything sent."""

    def __init__(self, url, accept=True, reason=""):
        self.url = url
        self.accept = accept
        self.reason = reason
        self.sent = []
        self.closed = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def send(self, data):
        frame = json.loads(data)
        self.sent.append(frame)
        if frame[0] == "EVENT":
            self.push(["OK", frame[1]["id"], self.accept, self.reason])

    def push(self, frame):
        self._inbound.put_nowait(json.dumps(frame))

    def hang_up(self):
        self._inbound.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._inbound.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self):
        self.closed = True


@pytest.fixture
def sockets(monkeypatch):
    """Returns (sockets by url, per-url ScriptedSocket options)."""
    created: dict[str, ScriptedSocket] = {}
    options: dict[str, dict] = {}

    async def connect(url, open_timeout=None):
        created[url] = ScriptedSocket(url, **options.get(url, {}))
        return created[url]

    monkeypatch.setattr(relay_module.websockets, "connect", connect)
    return created, options


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def test_publish_waits_for_ok(sockets, crypto, server_key, client_pubkey):
    created, _ = sockets
    pool = RelayPool(publish_timeout=1)
    message = make_message(crypto, server_key, client_pubkey, "x")

    accepted = await pool.publish(URLS, message)

    assert accepted == URLS
    assert created[URLS[0]].sent[0] == ["EVENT", message.model_dump()]
    await pool.close()
    assert all(socket.closed for socket in created.values())


async def test_partial_and_total_rejection(sockets, crypto, server_key, client_pubkey):
    _, options = sockets
    options[URLS[1]] = {"accept": False, "reason": "blocked: spam"}
    pool = RelayPool(publish_timeout=1)
    message = make_message(crypto, server_key, client_pubkey)

    assert await pool.publish(URLS, message) == [URLS[0]]

    with pytest.raises(TransportPublishFailure) as exc:
        await pool.publish(URLS[1:], make_message(crypto, server_key, client_pubkey, "y"))
    assert exc.value.errors == {URLS[1]: "blocked: spam"}
    await pool.close()


async def test_subscription_dedupes_and_closes(sockets, crypto, server_key, client_pubkey):
    created, _ = sockets
    pool = RelayPool()
    received = []
    message_filter = MessageFilter(kinds={4}, recipients={client_pubkey})

    subscription = await pool.subscribe(URLS, message_filter, received.append)
    request = created[URLS[0]].sent[0]
    assert request == ["REQ", subscription.subscription_id, message_filter.to_wire()]

    message = make_message(crypto, server_key, client_pubkey, "hello")
    for url in URLS:
        created[url].push(["EVENT", subscription.subscription_id, message.model_dump()])
    created[URLS[0]].push(["EVENT", "someone-else", message.model_dump()])
    created[URLS[0]].push(["NOTICE", "slow down"])
    created[URLS[0]].push("not a frame")
    await _settle()

    assert received == [message]

    subscription.close()
    await _settle()
    assert ["CLOSE", subscription.subscription_id] in created[URLS[1]].sent
    await pool.close()


async def test_connection_loss_fails_pending_publish(sockets, crypto, server_key, client_pubkey):
    created, _ = sockets
    pool = RelayPool(publish_timeout=5)
    await pool.subscribe(URLS[:1], MessageFilter(), lambda message: None)

    socket = created[URLS[0]]

    async def hang_up_instead_of_ok(data):
        socket.sent.append(json.loads(data))
        socket.hang_up()

    socket.send = hang_up_instead_of_ok

    with pytest.raises(TransportPublishFailure) as exc:
        await pool.publish(URLS[:1], make_message(crypto, server_key, client_pubkey))

    assert "connection" in exc.value.errors[URLS[0]]
    await pool.close()
