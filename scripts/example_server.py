#!/usr/bin/env python3
"""
Example RPC Server

Serves a small calculator over relay direct messages:
1. Loads settings from the environment (and .env)
2. Registers public and whitelisted methods
3. Listens until interrupted

Usage:
    RELAYRPC_SECRET_KEY=<nsec or hex> python scripts/example_server.py

Optional:
    RELAYRPC_RELAYS=wss://relay.example,wss://other.example
    RELAYRPC_PROCESSING_MODE=queued
    RELAYRPC_ALLOWED_AUTHORS=<npub>,<npub>
"""

import asyncio
import logging
import sys

from relayrpc import AuthMode, RpcServer, settings_from_env
from relayrpc.crypto import encode_npub

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def add(params, message, message_id, sender):
    return {"a": params["a"], "b": params["b"], "sum": params["a"] + params["b"]}


async def divide(params, message, message_id, sender):
    if params.get("b") == 0:
        raise ValueError("Cannot divide by zero")
    return params["a"] / params["b"]


def whoami(params, message, message_id, sender):
    return {"sender": sender, "npub": encode_npub(sender), "message_id": message_id}


async def main():
    try:
        settings = settings_from_env()
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    if settings.secret_key is None:
        print("❌ RELAYRPC_SECRET_KEY is required to run a server")
        sys.exit(1)

    server = RpcServer.from_settings(settings)
    server.register_method("add", add)
    server.register_method("divide", divide)
    server.register_method("whoami", whoami, {"auth_mode": AuthMode.WHITELIST})

    server.on("error", lambda e: logger.error(f"Reply failed: {e}"))

    print("\n" + "=" * 70)
    print("📡 RELAYRPC EXAMPLE SERVER")
    print("=" * 70)
    print(f"   npub:    {encode_npub(server.public_key)}")
    print(f"   relays:  {', '.join(server.relays)}")
    print(f"   mode:    {server.processing_mode.value}")
    print(f"   methods: {', '.join(server.registry.names)}")
    print("=" * 70 + "\n")

    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Server shutting down")
