"""
Queue Processor

Rate-limited batch puller for queued processing mode.

Every 1/rate seconds a tick dequeues up to `rate` items, processes them
concurrently with a per-item timeout, then acknowledges every item in the
order it was dequeued. A tick that fires while a batch is still in flight
does nothing, so two batches never overlap.

The rate is capped at MAX_PROCESSING_RATE because each processed item may
publish a reply, and relays rate-limit publishers.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from relayrpc.errors import EventProcessingTimeout, SenderNotAllowed
from relayrpc.queue.ports import AckResult, EventStorage, QueueItem

logger = logging.getLogger(__name__)

MAX_PROCESSING_RATE = 3
DEFAULT_EVENT_TIMEOUT = 30.0

# Processes one dequeued item; raising marks the item failed
ItemHandler = Callable[[QueueItem], Awaitable[Any]]


@dataclass
class ProcessorStats:
    """Statistics for the queue processor."""
    batches: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    rejected: int = 0
    skipped_ticks: int = 0
    last_batch_at: datetime | None = None

    def record_batch(self) -> None:
        self.batches += 1
        self.last_batch_at = datetime.now(timezone.utc)

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_failure(self, error: BaseException) -> None:
        self.processed += 1
        self.failed += 1
        if isinstance(error, EventProcessingTimeout):
            self.timed_out += 1
        elif isinstance(error, SenderNotAllowed):
            self.rejected += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "batches": self.batches,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "rejected": self.rejected,
            "skipped_ticks": self.skipped_ticks,
            "last_batch_at": (
                self.last_batch_at.isoformat()
                if self.last_batch_at
                else None
            ),
        }


def effective_rate(processing_rate: float | None) -> float:
    """Configured rate, defaulted and capped at MAX_PROCESSING_RATE."""
    if not processing_rate or processing_rate <= 0:
        return MAX_PROCESSING_RATE
    return min(processing_rate, MAX_PROCESSING_RATE)


class QueueProcessor:
    """
    Pulls batches from EventStorage on a fixed interval.

    The handler does the actual work for one item. Any exception it raises,
    including a timeout, is converted into a failed acknowledgement.
    """

    def __init__(
        self,
        storage: EventStorage,
        handler: ItemHandler,
        processing_rate: float | None = MAX_PROCESSING_RATE,
        event_timeout: float = DEFAULT_EVENT_TIMEOUT,
    ):
        """
        Initialize the processor.

        Args:
            storage: Storage to dequeue from and acknowledge to
            handler: Coroutine function processing one item
            processing_rate: Ticks per second (also the batch size)
            event_timeout: Seconds each item may run before it fails
        """
        self._storage = storage
        self._handler = handler
        self._rate = effective_rate(processing_rate)
        self._interval = 1.0 / self._rate
        self._batch_size = max(1, int(self._rate))
        self._event_timeout = event_timeout

        self._loop_task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self._is_processing = False
        self._stats = ProcessorStats()

    @property
    def processing_rate(self) -> float:
        return self._rate

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def stats(self) -> ProcessorStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    async def start(self) -> None:
        """Start the tick loop."""
        if self.is_running:
            logger.warning("Queue processor already started")
            return

        self._loop_task = asyncio.create_task(self._run(), name="queue_processor")
        logger.info(
            f"Queue processor started (rate={self._rate}/s, "
            f"batch={self._batch_size}, event_timeout={self._event_timeout}s)"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop ticking and wait for the in-flight batch.

        Args:
            timeout: Max seconds to wait before cancelling the batch
        """
        if self._loop_task is None:
            return

        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None

        if self._ticks:
            pending = list(self._ticks)
            try:
                await asyncio.wait_for(
                    asyncio.gather(*pending, return_exceptions=True),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Queue processor shutdown timed out, cancelling batch...")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            f"Queue processor stopped. Stats: "
            f"processed={self._stats.processed}, "
            f"succeeded={self._stats.succeeded}, "
            f"failed={self._stats.failed}"
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def tick(self) -> int:
        """
        Run one batch.

        Returns:
            Number of items processed (0 for an empty or skipped tick)
        """
        if self._is_processing:
            self._stats.skipped_ticks += 1
            return 0

        self._is_processing = True
        try:
            try:
                items = await self._storage.dequeue_batch(self._batch_size)
            except Exception as e:
                logger.error(f"Dequeue failed: {e}", exc_info=True)
                return 0

            if not items:
                return 0

            self._stats.record_batch()
            outcomes = await asyncio.gather(
                *(self._run_item(item) for item in items),
                return_exceptions=True,
            )

            for item, outcome in zip(items, outcomes):
                await self._acknowledge(item, outcome)

            return len(items)
        finally:
            self._is_processing = False

    async def _run_item(self, item: QueueItem) -> Any:
        # Only the deadline counts as a timeout; a TimeoutError raised by the
        # handler itself is an ordinary failure.
        task = asyncio.ensure_future(self._handler(item))
        try:
            done, _ = await asyncio.wait({task}, timeout=self._event_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise EventProcessingTimeout(self._event_timeout)
        return task.result()

    async def _acknowledge(self, item: QueueItem, outcome: Any) -> None:
        if isinstance(outcome, BaseException):
            self._stats.record_failure(outcome)
            error = str(outcome) or outcome.__class__.__name__
            result = AckResult.failed(error, retryable=not isinstance(outcome, SenderNotAllowed))
            logger.info(f"Event {item.storage_id} failed: {error}")
        else:
            self._stats.record_success()
            result = AckResult.success()

        try:
            await self._storage.ack(item.storage_id, result)
        except Exception as e:
            logger.error(f"Ack failed for {item.storage_id}: {e}", exc_info=True)

    async def health_check(self) -> dict[str, Any]:
        """Get health status of the processor."""
        return {
            "running": self.is_running,
            "processing": self._is_processing,
            "processing_rate": self._rate,
            "batch_size": self._batch_size,
            "event_timeout": self._event_timeout,
            "queue_size": await self._storage.size(),
            "stats": self._stats.as_dict(),
        }
