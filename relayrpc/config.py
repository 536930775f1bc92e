"""
Configuration

Settings shared by RpcServer.from_settings and RpcClient.from_settings.

Environment variables (a .env file is loaded first when present):
    RELAYRPC_RELAYS: Comma-separated relay URLs
    RELAYRPC_SECRET_KEY: This identity's secret key (hex or nsec)
    RELAYRPC_PUBLIC_KEY: Expected public key, checked against the secret
    RELAYRPC_SERVER_PUBLIC_KEY: Server identity a client calls (hex or npub)
    RELAYRPC_ALLOWED_AUTHORS: Comma-separated global whitelist
    RELAYRPC_TIMEOUT: Client call timeout in seconds
    RELAYRPC_PROCESSING_MODE: "immediate" or "queued"
    RELAYRPC_PROCESSING_RATE: Queue ticks per second (capped at 3)
    RELAYRPC_EVENT_TIMEOUT: Per-item processing timeout in seconds
    RELAYRPC_CLOCK_SKEW: Seconds subtracted from a reply subscription's lower bound
    EVENT_STORAGE_BACKEND: "memory" or "redis"
    REDIS_URL: Redis connection URL
"""

import os
from dataclasses import dataclass, field
from enum import Enum

from dotenv import load_dotenv

from relayrpc.crypto.keys import derive_public_key, normalize_secret_key, public_to_hex

DEFAULT_RELAYS = ["wss://dev-relay.lnfi.network"]


class ProcessingMode(str, Enum):
    """How the server handles inbound requests."""
    IMMEDIATE = "immediate"
    QUEUED = "queued"


@dataclass
class RelaySettings:
    """
    Attributes:
        relays: Relay URLs to publish to and subscribe on
        secret_key: 32-byte secret key, or None to generate one
        server_public_key: Hex identity of the server a client talks to
        allowed_authors: Global whitelist (empty = unrestricted)
        timeout: Client call timeout in seconds
        processing_mode: Server processing mode
        processing_rate: Queue ticks per second
        event_timeout: Per-item processing timeout in seconds
        clock_skew: Seconds of tolerated clock difference for replies
        storage_backend: Event storage backend for queued mode
        redis_url: Redis URL for the redis storage backend
    """
    relays: list[str] = field(default_factory=lambda: list(DEFAULT_RELAYS))
    secret_key: bytes | None = None
    server_public_key: str | None = None
    allowed_authors: list[str] = field(default_factory=list)
    timeout: float = 30.0
    processing_mode: ProcessingMode = ProcessingMode.IMMEDIATE
    processing_rate: float = 3
    event_timeout: float = 30.0
    clock_skew: int = 10
    storage_backend: str = "memory"
    redis_url: str | None = None


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _positive_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def settings_from_env(dotenv: bool = True) -> RelaySettings:
    """
    Create RelaySettings from environment variables.

    Raises:
        ValueError: If a variable holds an invalid value, or
            RELAYRPC_PUBLIC_KEY does not belong to RELAYRPC_SECRET_KEY
    """
    if dotenv:
        load_dotenv()

    secret_key = None
    if os.getenv("RELAYRPC_SECRET_KEY"):
        secret_key = normalize_secret_key(os.environ["RELAYRPC_SECRET_KEY"])

        expected = os.getenv("RELAYRPC_PUBLIC_KEY")
        if expected and public_to_hex(expected) != derive_public_key(secret_key):
            raise ValueError("RELAYRPC_PUBLIC_KEY does not match RELAYRPC_SECRET_KEY")

    server_public_key = os.getenv("RELAYRPC_SERVER_PUBLIC_KEY")
    if server_public_key:
        server_public_key = public_to_hex(server_public_key)

    mode = os.getenv("RELAYRPC_PROCESSING_MODE", "immediate").lower()
    try:
        processing_mode = ProcessingMode(mode)
    except ValueError as e:
        raise ValueError(f"RELAYRPC_PROCESSING_MODE must be immediate or queued, got {mode!r}") from e

    raw_skew = os.getenv("RELAYRPC_CLOCK_SKEW", "10")
    try:
        clock_skew = int(raw_skew)
    except ValueError as e:
        raise ValueError(f"RELAYRPC_CLOCK_SKEW must be an integer, got {raw_skew!r}") from e

    return RelaySettings(
        relays=_split(os.getenv("RELAYRPC_RELAYS")) or list(DEFAULT_RELAYS),
        secret_key=secret_key,
        server_public_key=server_public_key,
        allowed_authors=[public_to_hex(k) for k in _split(os.getenv("RELAYRPC_ALLOWED_AUTHORS"))],
        timeout=_positive_float("RELAYRPC_TIMEOUT", "30"),
        processing_mode=processing_mode,
        processing_rate=_positive_float("RELAYRPC_PROCESSING_RATE", "3"),
        event_timeout=_positive_float("RELAYRPC_EVENT_TIMEOUT", "30"),
        clock_skew=clock_skew,
        storage_backend=os.getenv("EVENT_STORAGE_BACKEND", "memory").lower(),
        redis_url=os.getenv("REDIS_URL"),
    )
