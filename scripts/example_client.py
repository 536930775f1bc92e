#!/usr/bin/env python3
"""
Example RPC Client

Calls the example server's methods and prints the outcomes.

Usage:
    RELAYRPC_SERVER_PUBLIC_KEY=<npub> python scripts/example_client.py

RELAYRPC_SECRET_KEY is optional; without it an ephemeral identity is used.
"""

import asyncio
import logging
import sys

from relayrpc import RemoteError, RequestTimeout, RpcClient, settings_from_env

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_call(client: RpcClient, method: str, params: dict | None = None):
    print(f"\n→ {method}({params or {}})")
    try:
        result = await client.call(method, params)
        print(f"   ✅ {result}")
    except RemoteError as e:
        print(f"   ⚠️  Server error: {e}")
    except RequestTimeout as e:
        print(f"   ⏱️  {e}")


async def main():
    settings = settings_from_env()
    if not settings.server_public_key:
        print("❌ RELAYRPC_SERVER_PUBLIC_KEY is required")
        sys.exit(1)

    client = RpcClient.from_settings(settings)
    await client.connect()

    try:
        await run_call(client, "add", {"a": 5, "b": 3})
        await run_call(client, "divide", {"a": 1, "b": 0})
        await run_call(client, "whoami")
        await run_call(client, "foo")

        results = await asyncio.gather(
            *(client.call("add", {"a": n, "b": n}) for n in range(3)),
            return_exceptions=True,
        )
        print(f"\n→ 3 concurrent calls: {results}")
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
