import asyncio

import pytest

from relayrpc.errors import SenderNotAllowed
from relayrpc.protocol import SignedMessage
from relayrpc.queue import (
    AckResult,
    AckStatus,
    InMemoryEventStorage,
    MAX_PROCESSING_RATE,
    QueueFullError,
    QueueProcessor,
    StorageClosedError,
    create_event_storage,
    effective_rate,
)


def _event(n: int) -> SignedMessage:
    return SignedMessage(
        id=f"{n:064x}",
        pubkey="bb" * 32,
        created_at=1700000000 + n,
        tags=[["p", "cc" * 32]],
        content=f"event {n}",
    )


class RecordingStorage(InMemoryEventStorage):
    """In-memory storage that also writes acks into a shared timeline."""

    def __init__(self, timeline: list[str], **kwargs):
        super().__init__(**kwargs)
        self.timeline = timeline

    async def ack(self, storage_id, result):
        self.timeline.append(f"ack:{storage_id}:{result.status.value}")
        await super().ack(storage_id, result)


class TestInMemoryEventStorage:
    async def test_fifo_batches(self):
        storage = InMemoryEventStorage()
        ids = [await storage.enqueue(_event(n)) for n in range(5)]

        assert all(storage_id.startswith("mem_") for storage_id in ids)
        assert len(set(ids)) == 5
        assert await storage.size() == 5

        batch = await storage.dequeue_batch(3)
        assert [item.storage_id for item in batch] == ids[:3]
        assert await storage.size() == 2
        assert [item.storage_id for item in await storage.dequeue_batch(10)] == ids[3:]
        assert await storage.dequeue_batch(10) == []

    async def test_acks_are_recorded(self):
        storage = InMemoryEventStorage()
        storage_id = await storage.enqueue(_event(1))
        await storage.dequeue_batch(1)

        await storage.ack(storage_id, AckResult.failed("boom"))

        ack = storage.get_ack(storage_id)
        assert ack.status == AckStatus.FAILED
        assert ack.error == "boom"
        assert storage.stats()["failed"] == 1
        # Failed acks are not redelivered
        assert await storage.size() == 0

    async def test_capacity(self):
        storage = InMemoryEventStorage(max_size=1)
        await storage.enqueue(_event(1))
        with pytest.raises(QueueFullError):
            await storage.enqueue(_event(2))

    async def test_shutdown(self):
        storage = InMemoryEventStorage()
        await storage.shutdown()
        with pytest.raises(StorageClosedError):
            await storage.enqueue(_event(1))


class TestQueueProcessor:
    @pytest.mark.parametrize(
        "configured, expected",
        [(None, 3), (0, 3), (-1, 3), (1, 1), (2, 2), (3, 3), (10, 3)],
    )
    def test_effective_rate(self, configured, expected):
        assert effective_rate(configured) == expected

    def test_batch_size_follows_rate(self):
        storage = InMemoryEventStorage()
        assert QueueProcessor(storage, None, processing_rate=100).batch_size == MAX_PROCESSING_RATE
        assert QueueProcessor(storage, None, processing_rate=0.5).batch_size == 1

    async def test_acks_in_dequeue_order_after_all_outcomes(self):
        timeline: list[str] = []
        storage = RecordingStorage(timeline)
        first = await storage.enqueue(_event(1))
        second = await storage.enqueue(_event(2))

        async def handler(item):
            if item.storage_id == first:
                timeline.append(f"fail:{item.storage_id}")
                raise ValueError("handler exploded")
            await asyncio.sleep(0.05)
            timeline.append(f"done:{item.storage_id}")

        processor = QueueProcessor(storage, handler, processing_rate=2)
        assert await processor.tick() == 2

        assert timeline == [
            f"fail:{first}",
            f"done:{second}",
            f"ack:{first}:failed",
            f"ack:{second}:success",
        ]
        assert storage.get_ack(first).error == "handler exploded"
        assert processor.stats.succeeded == 1
        assert processor.stats.failed == 1

    async def test_items_run_concurrently(self):
        storage = InMemoryEventStorage()
        for n in range(3):
            await storage.enqueue(_event(n))

        running = 0
        peak = 0

        async def handler(item):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1

        await QueueProcessor(storage, handler, processing_rate=3).tick()
        assert peak == 3

    async def test_item_timeout(self):
        storage = InMemoryEventStorage()
        slow = await storage.enqueue(_event(1))
        fast = await storage.enqueue(_event(2))

        async def handler(item):
            if item.storage_id == slow:
                await asyncio.sleep(5)

        processor = QueueProcessor(storage, handler, processing_rate=2, event_timeout=0.05)
        loop = asyncio.get_running_loop()
        started = loop.time()
        await processor.tick()

        assert loop.time() - started < 1
        assert storage.get_ack(slow).error == "Event processing timeout"
        assert storage.get_ack(fast).status == AckStatus.SUCCESS
        assert processor.stats.timed_out == 1

    async def test_handler_timeout_error_is_an_ordinary_failure(self):
        storage = InMemoryEventStorage()
        storage_id = await storage.enqueue(_event(1))

        async def handler(item):
            raise TimeoutError("db")

        processor = QueueProcessor(storage, handler, event_timeout=5)
        await processor.tick()

        ack = storage.get_ack(storage_id)
        assert ack.error == "db"
        assert ack.retryable
        assert processor.stats.failed == 1
        assert processor.stats.timed_out == 0

    async def test_sender_not_allowed_is_not_retryable(self):
        storage = InMemoryEventStorage()
        storage_id = await storage.enqueue(_event(1))

        async def handler(item):
            raise SenderNotAllowed(item.event.pubkey)

        processor = QueueProcessor(storage, handler)
        await processor.tick()

        ack = storage.get_ack(storage_id)
        assert ack.error == "sender_not_allowed"
        assert not ack.retryable
        assert processor.stats.rejected == 1

    async def test_overlapping_tick_is_a_noop(self):
        storage = InMemoryEventStorage()
        await storage.enqueue(_event(1))
        await storage.enqueue(_event(2))
        release = asyncio.Event()

        async def handler(item):
            await release.wait()

        processor = QueueProcessor(storage, handler, processing_rate=1)
        first = asyncio.create_task(processor.tick())
        while not processor.is_processing:
            await asyncio.sleep(0)

        assert await processor.tick() == 0
        assert processor.stats.skipped_ticks == 1

        release.set()
        assert await first == 1
        assert await storage.size() == 1

    async def test_empty_tick(self):
        processor = QueueProcessor(InMemoryEventStorage(), None)
        assert await processor.tick() == 0
        assert processor.stats.batches == 0

    async def test_start_and_stop(self):
        storage = InMemoryEventStorage()
        ids = [await storage.enqueue(_event(n)) for n in range(4)]
        handled = []

        async def handler(item):
            handled.append(item.storage_id)

        processor = QueueProcessor(storage, handler, processing_rate=3)
        await processor.start()
        assert processor.is_running

        for _ in range(50):
            if len(handled) == 4:
                break
            await asyncio.sleep(0.05)
        await processor.stop()

        assert handled == ids
        assert not processor.is_running
        health = await processor.health_check()
        assert health["stats"]["succeeded"] == 4
        assert health["queue_size"] == 0


class TestFactory:
    def test_memory_default(self, monkeypatch):
        monkeypatch.delenv("EVENT_STORAGE_BACKEND", raising=False)
        assert isinstance(create_event_storage(), InMemoryEventStorage)

    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("EVENT_STORAGE_BACKEND", "MEMORY")
        assert isinstance(create_event_storage(max_size=5), InMemoryEventStorage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_event_storage("kafka")
