import pytest

from relayrpc import ProcessingMode, RpcClient, RpcServer, settings_from_env
from relayrpc.config import DEFAULT_RELAYS
from relayrpc.crypto import derive_public_key, encode_npub, encode_nsec, generate_secret_key
from relayrpc.queue import InMemoryEventStorage

ENV_VARS = [
    "RELAYRPC_RELAYS",
    "RELAYRPC_SECRET_KEY",
    "RELAYRPC_PUBLIC_KEY",
    "RELAYRPC_SERVER_PUBLIC_KEY",
    "RELAYRPC_ALLOWED_AUTHORS",
    "RELAYRPC_TIMEOUT",
    "RELAYRPC_PROCESSING_MODE",
    "RELAYRPC_PROCESSING_RATE",
    "RELAYRPC_EVENT_TIMEOUT",
    "RELAYRPC_CLOCK_SKEW",
    "EVENT_STORAGE_BACKEND",
    "REDIS_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = settings_from_env(dotenv=False)

    assert settings.relays == DEFAULT_RELAYS
    assert settings.secret_key is None
    assert settings.timeout == 30.0
    assert settings.processing_mode == ProcessingMode.IMMEDIATE
    assert settings.processing_rate == 3
    assert settings.clock_skew == 10
    assert settings.storage_backend == "memory"


def test_full_environment(monkeypatch):
    secret = generate_secret_key()
    server = derive_public_key(generate_secret_key())
    author = derive_public_key(generate_secret_key())

    monkeypatch.setenv("RELAYRPC_RELAYS", "wss://a.test, wss://b.test,")
    monkeypatch.setenv("RELAYRPC_SECRET_KEY", encode_nsec(secret))
    monkeypatch.setenv("RELAYRPC_PUBLIC_KEY", encode_npub(derive_public_key(secret)))
    monkeypatch.setenv("RELAYRPC_SERVER_PUBLIC_KEY", encode_npub(server))
    monkeypatch.setenv("RELAYRPC_ALLOWED_AUTHORS", author)
    monkeypatch.setenv("RELAYRPC_TIMEOUT", "5")
    monkeypatch.setenv("RELAYRPC_PROCESSING_MODE", "QUEUED")
    monkeypatch.setenv("RELAYRPC_PROCESSING_RATE", "1.5")
    monkeypatch.setenv("RELAYRPC_CLOCK_SKEW", "0")

    settings = settings_from_env(dotenv=False)

    assert settings.relays == ["wss://a.test", "wss://b.test"]
    assert settings.secret_key == secret
    assert settings.server_public_key == server
    assert settings.allowed_authors == [author]
    assert settings.timeout == 5.0
    assert settings.processing_mode == ProcessingMode.QUEUED
    assert settings.processing_rate == 1.5
    assert settings.clock_skew == 0


@pytest.mark.parametrize(
    "name, value",
    [
        ("RELAYRPC_TIMEOUT", "soon"),
        ("RELAYRPC_TIMEOUT", "0"),
        ("RELAYRPC_PROCESSING_RATE", "-1"),
        ("RELAYRPC_PROCESSING_MODE", "batch"),
        ("RELAYRPC_CLOCK_SKEW", "ten"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        settings_from_env(dotenv=False)


def test_public_key_must_match_secret(monkeypatch):
    monkeypatch.setenv("RELAYRPC_SECRET_KEY", generate_secret_key().hex())
    monkeypatch.setenv("RELAYRPC_PUBLIC_KEY", derive_public_key(generate_secret_key()))

    with pytest.raises(ValueError):
        settings_from_env(dotenv=False)


def test_from_settings(monkeypatch, hub):
    secret = generate_secret_key()
    monkeypatch.setenv("RELAYRPC_SECRET_KEY", secret.hex())
    monkeypatch.setenv("RELAYRPC_SERVER_PUBLIC_KEY", derive_public_key(secret))
    monkeypatch.setenv("RELAYRPC_PROCESSING_MODE", "queued")
    monkeypatch.setenv("RELAYRPC_TIMEOUT", "7")
    settings = settings_from_env(dotenv=False)

    server = RpcServer.from_settings(settings, transport=hub.transport())
    client = RpcClient.from_settings(settings, transport=hub.transport())

    assert server.public_key == derive_public_key(secret)
    assert isinstance(server.storage, InMemoryEventStorage)
    assert server.queue_processor is not None
    assert client.server_public_key == server.public_key
    assert client.timeout == 7.0
    assert client.relays == DEFAULT_RELAYS
