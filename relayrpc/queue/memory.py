"""
In-Memory Event Storage

FIFO storage backed by a deque. Suitable for development, testing, and
single-process servers.

Dequeued items leave pending storage immediately; acknowledgements are
recorded for inspection but never trigger redelivery.
"""

import asyncio
import logging
import time
from collections import OrderedDict, deque
from typing import Any

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


class InMemoryEventStorage(EventStorage):
    """In-process event storage."""

    def __init__(self, max_size: int = 10000, max_acks: int = 10000):
        """
        Initialize the storage.

        Args:
            max_size: Maximum number of pending items
            max_acks: Number of acknowledgements kept for inspection
        """
        self._max_size = max_size
        self._max_acks = max_acks

        self._pending: deque[QueueItem] = deque()
        self._acks: OrderedDict[str, AckResult] = OrderedDict()
        self._counter = 0
        self._lock = asyncio.Lock()
        self._closed = False

        self._enqueued_count = 0
        self._succeeded_count = 0
        self._failed_count = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"mem_{int(time.time() * 1000)}_{self._counter}"

    async def enqueue(self, event: SignedMessage) -> str:
        async with self._lock:
            if self._closed:
                raise StorageClosedError("Event storage is shut down")

            if len(self._pending) >= self._max_size:
                raise QueueFullError(len(self._pending), self._max_size)

            item = QueueItem(storage_id=self._next_id(), event=event)
            self._pending.append(item)
            self._enqueued_count += 1

            logger.debug(f"Event enqueued: {item.storage_id} (message={event.short_id()})")
            return item.storage_id

    async def dequeue_batch(self, size: int) -> list[QueueItem]:
        async with self._lock:
            count = min(max(size, 0), len(self._pending))
            return [self._pending.popleft() for _ in range(count)]

    async def ack(self, storage_id: str, result: AckResult) -> None:
        async with self._lock:
            self._acks[storage_id] = result
            while len(self._acks) > self._max_acks:
                self._acks.popitem(last=False)

            if result.status == AckStatus.SUCCESS:
                self._succeeded_count += 1
            else:
                self._failed_count += 1
                logger.debug(f"Event {storage_id} failed: {result.error}")

    async def size(self) -> int:
        return len(self._pending)

    async def shutdown(self) -> None:
        async with self._lock:
            self._closed = True
            if self._pending:
                logger.warning(f"Event storage shut down with {len(self._pending)} pending items")

    def get_ack(self, storage_id: str) -> AckResult | None:
        """Return the recorded acknowledgement for an item, if any."""
        return self._acks.get(storage_id)

    @property
    def acks(self) -> list[tuple[str, AckResult]]:
        """Recorded acknowledgements in the order they were made."""
        return list(self._acks.items())

    def stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "enqueued": self._enqueued_count,
            "succeeded": self._succeeded_count,
            "failed": self._failed_count,
            "closed": self._closed,
        }
