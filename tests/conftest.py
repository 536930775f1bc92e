import pytest

from relayrpc.crypto import Secp256k1Crypto, derive_public_key, generate_secret_key
from relayrpc.protocol import SignedMessage, UnsignedMessage
from relayrpc.rpc import RpcClient, RpcServer
from relayrpc.transport import InMemoryRelayHub

RELAYS = ["wss://relay-a.test", "wss://relay-b.test"]


@pytest.fixture
def crypto():
    return Secp256k1Crypto()


@pytest.fixture
def server_key():
    return generate_secret_key()


@pytest.fixture
def client_key():
    return generate_secret_key()


@pytest.fixture
def client_pubkey(client_key):
    return derive_public_key(client_key)


@pytest.fixture
def hub(crypto):
    return InMemoryRelayHub(verifier=crypto.verify)


@pytest.fixture
async def server(hub, server_key):
    server = RpcServer(hub.transport(), secret_key=server_key, relays=RELAYS)
    yield server
    await server.stop()


@pytest.fixture
async def client(hub, client_key, server):
    client = RpcClient(
        hub.transport(),
        secret_key=client_key,
        server_public_key=server.public_key,
        relays=RELAYS,
        timeout=2.0,
    )
    yield client
    await client.close()


def add_handler(params, message, message_id, sender):
    return {**params, "sum": params["a"] + params["b"]}


def make_message(
    crypto: Secp256k1Crypto,
    secret_key: bytes,
    recipient: str,
    content: str = "",
    tags: list[list[str]] | None = None,
) -> SignedMessage:
    """Sign a kind 4 message with arbitrary (unencrypted) content."""
    unsigned = UnsignedMessage(
        pubkey=crypto.public_key(secret_key),
        tags=[["p", recipient], *(tags or [])],
        content=content,
    )
    return crypto.sign(unsigned, secret_key)
