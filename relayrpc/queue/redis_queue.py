"""
Redis Event Storage

Event storage shared through Redis, so queued messages survive a server
restart and failed items can be redelivered.

Key schema:
- relayrpc:events:pending       - List of storage ids, oldest first
- relayrpc:events:item:{id}     - Hash {event, attempts}
- relayrpc:events:ack:{id}      - Hash {status, error, acked_at} (expires)
- relayrpc:events:dead          - List of ids that exhausted redelivery or
                                  whose payload could not be parsed
- relayrpc:events:seq           - Id counter
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, TYPE_CHECKING

from pydantic import ValidationError

REDIS_AVAILABLE = False
try:
    import redis.asyncio as aioredis
    REDIS_AVAILABLE = True
except ImportError:
    aioredis = None  # type: ignore

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisType

from relayrpc.protocol.message import SignedMessage
from relayrpc.queue.ports import (
    AckResult,
    AckStatus,
    EventStorage,
    QueueFullError,
    QueueItem,
    StorageClosedError,
)

logger = logging.getLogger(__name__)


class RedisEventStorage(EventStorage):
    """
    Redis-backed event storage.

    A failed, retryable ack pushes the item back onto the pending list until
    it has been attempted `max_redeliveries + 1` times; after that it moves
    to the dead-letter list.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "relayrpc:events",
        max_size: int = 10000,
        max_redeliveries: int = 3,
        ack_ttl_seconds: int = 3600,
        client: RedisType | Any | None = None,
    ):
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all Redis keys
            max_size: Maximum number of pending items
            max_redeliveries: Redeliveries allowed after a failed ack
            ack_ttl_seconds: How long acknowledgements are kept
            client: Pre-built async Redis client (skips redis_url)
        """
        if client is None and not REDIS_AVAILABLE:
            raise ImportError(
                "Redis package not installed. "
                "Install with: pip install relayrpc[redis]"
            )

        self._redis_url = redis_url
        self._prefix = key_prefix
        self._max_size = max_size
        self._max_redeliveries = max_redeliveries
        self._ack_ttl = ack_ttl_seconds

        self._redis = client
        self._owns_client = client is None
        self._closed = False
        self._lock = asyncio.Lock()

    async def _ensure_connected(self) -> RedisType:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return self._redis

    @property
    def _pending_key(self) -> str:
        return f"{self._prefix}:pending"

    @property
    def _dead_key(self) -> str:
        return f"{self._prefix}:dead"

    @property
    def _seq_key(self) -> str:
        return f"{self._prefix}:seq"

    def _item_key(self, storage_id: str) -> str:
        return f"{self._prefix}:item:{storage_id}"

    def _ack_key(self, storage_id: str) -> str:
        return f"{self._prefix}:ack:{storage_id}"

    async def enqueue(self, event: SignedMessage) -> str:
        if self._closed:
            raise StorageClosedError("Event storage is shut down")

        r = await self._ensure_connected()

        pending = await r.llen(self._pending_key)
        if pending >= self._max_size:
            raise QueueFullError(pending, self._max_size)

        seq = await r.incr(self._seq_key)
        storage_id = f"redis_{int(time.time() * 1000)}_{seq}"

        await r.hset(
            self._item_key(storage_id),
            mapping={"event": event.model_dump_json(), "attempts": "1"},
        )
        await r.rpush(self._pending_key, storage_id)

        logger.debug(f"Event enqueued: {storage_id} (message={event.short_id()})")
        return storage_id

    async def dequeue_batch(self, size: int) -> list[QueueItem]:
        if size <= 0:
            return []

        r = await self._ensure_connected()

        async with self._lock:
            ids = await r.lpop(self._pending_key, size)

        items: list[QueueItem] = []
        for storage_id in ids or []:
            data = await r.hgetall(self._item_key(storage_id))
            if not data:
                logger.warning(f"Event {storage_id} has no stored payload, skipping")
                continue
            try:
                event = SignedMessage.model_validate_json(data["event"])
                attempts = int(data.get("attempts", 1))
            except (ValidationError, KeyError, ValueError) as e:
                logger.error(f"Event {storage_id} has an unreadable payload, moving to dead letter: {e}")
                await r.rpush(self._dead_key, storage_id)
                continue
            items.append(QueueItem(storage_id=storage_id, event=event, attempts=attempts))
        return items

    async def ack(self, storage_id: str, result: AckResult) -> None:
        r = await self._ensure_connected()

        ack_key = self._ack_key(storage_id)
        await r.hset(ack_key, mapping={
            "status": result.status.value,
            "error": result.error or "",
            "acked_at": result.acked_at.isoformat(),
        })
        await r.expire(ack_key, self._ack_ttl)

        item_key = self._item_key(storage_id)

        if result.status == AckStatus.SUCCESS:
            await r.delete(item_key)
            return

        if not result.retryable:
            await r.delete(item_key)
            logger.info(f"Event {storage_id} failed permanently: {result.error}")
            return

        attempts = await r.hincrby(item_key, "attempts", 1)
        if attempts <= self._max_redeliveries + 1:
            await r.rpush(self._pending_key, storage_id)
            logger.info(f"Event {storage_id} redelivered (attempt {attempts}): {result.error}")
        else:
            await r.rpush(self._dead_key, storage_id)
            logger.warning(
                f"Event {storage_id} moved to dead letter after "
                f"{attempts - 1} attempts: {result.error}"
            )

    async def get_ack(self, storage_id: str) -> AckResult | None:
        """Return the recorded acknowledgement for an item, if any."""
        r = await self._ensure_connected()
        data = await r.hgetall(self._ack_key(storage_id))
        if not data:
            return None
        return AckResult(
            status=AckStatus(data["status"]),
            error=data.get("error") or None,
        )

    async def dead_letters(self) -> list[str]:
        r = await self._ensure_connected()
        return list(await r.lrange(self._dead_key, 0, -1))

    async def size(self) -> int:
        r = await self._ensure_connected()
        return await r.llen(self._pending_key)

    async def shutdown(self) -> None:
        self._closed = True
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
        logger.info("Redis event storage shut down")
