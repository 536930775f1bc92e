import json

import pytest

from relayrpc.errors import DecryptionFailure, SenderNotAllowed
from relayrpc.policy import AuthConfig, AuthMode, AuthorizationEvaluator, WhitelistStore
from relayrpc.protocol import SignedMessage
from relayrpc.queue import QueueItem
from relayrpc.registry import MethodRegistry
from relayrpc.rpc.processing import RequestProcessor

SENDER = "ab" * 32
OTHER = "cd" * 32


class FakeEmitter:
    """Plaintext emitter: content is the request body, replies are recorded."""

    def __init__(self):
        self.replies = []

    def decrypt(self, counterpart, ciphertext):
        if ciphertext.startswith("!"):
            raise DecryptionFailure("bad ciphertext")
        return ciphertext

    async def reply(self, recipient, response, reply_to=None):
        self.replies.append((recipient, response, reply_to))
        return True


def _request(body, sender=SENDER, message_id="11" * 32) -> SignedMessage:
    content = body if isinstance(body, str) else json.dumps(body)
    return SignedMessage(id=message_id, pubkey=sender, created_at=1700000000, content=content)


@pytest.fixture
def emitter():
    return FakeEmitter()


@pytest.fixture
def registry():
    registry = MethodRegistry()
    registry.register("add", lambda params, *_: {"sum": params["a"] + params["b"]})
    return registry


@pytest.fixture
def whitelist():
    return WhitelistStore()


@pytest.fixture
def processor(emitter, registry, whitelist):
    return RequestProcessor(emitter, registry, AuthorizationEvaluator(whitelist), whitelist)


def _only_reply(emitter):
    assert len(emitter.replies) == 1
    return emitter.replies[0]


async def test_success(processor, emitter):
    result = await processor.process(_request({"method": "add", "params": {"a": 5, "b": 3}, "id": "r1"}))

    recipient, response, reply_to = _only_reply(emitter)
    assert result == {"sum": 8}
    assert recipient == SENDER
    assert reply_to == "11" * 32
    assert response.id == "r1"
    assert response.result == {"sum": 8}
    assert response.error is None


@pytest.mark.parametrize(
    "body, error",
    [
        ("{oops", "Invalid JSON format"),
        ({"params": {}, "id": "r1"}, "Missing method field"),
    ],
)
async def test_malformed_requests_reply_with_null_id(processor, emitter, body, error):
    await processor.process(_request(body))

    _, response, _ = _only_reply(emitter)
    assert response.error == error
    assert response.id is None


async def test_unknown_method(processor, emitter):
    await processor.process(_request({"method": "foo", "id": "r2"}))

    _, response, _ = _only_reply(emitter)
    assert response.error == "Method not found: foo"
    assert response.id == "r2"


async def test_permission_denied(processor, emitter, registry):
    registry.register(
        "secret",
        lambda *_: "classified",
        AuthConfig.create(AuthMode.WHITELIST, whitelist=[OTHER]),
    )

    assert await processor.process(_request({"method": "secret", "id": "r3"})) is None

    _, response, _ = _only_reply(emitter)
    assert response.error == "Permission denied for method: secret"
    assert response.id == "r3"


async def test_handler_error_is_replied_and_raised(processor, emitter, registry):
    async def broken(params, message, message_id, sender):
        raise ValueError("division by zero")

    registry.register("broken", broken)

    with pytest.raises(ValueError):
        await processor.process(_request({"method": "broken", "id": 7}))

    _, response, _ = _only_reply(emitter)
    assert response.error == "division by zero"
    assert response.id == 7


async def test_handler_receives_message_context(processor, registry):
    seen = {}

    def capture(params, message, message_id, sender):
        seen.update(params=params, message_id=message_id, sender=sender)
        return True

    registry.register("capture", capture)
    await processor.process(_request({"method": "capture", "params": {"x": 1}}))

    assert seen == {"params": {"x": 1}, "message_id": "11" * 32, "sender": SENDER}


async def test_undecryptable_message_gets_no_reply(processor, emitter):
    assert await processor.process(_request("!garbage")) is None
    assert emitter.replies == []


async def test_queued_sender_rechecked(processor, emitter, whitelist):
    whitelist.add(OTHER)
    item = QueueItem(storage_id="mem_1_1", event=_request({"method": "add", "params": {"a": 1, "b": 1}}))

    with pytest.raises(SenderNotAllowed):
        await processor.process_queued(item)
    assert emitter.replies == []

    whitelist.add(SENDER)
    assert await processor.process_queued(item) == {"sum": 2}
