"""
Event Storage Port Interfaces

Abstract contract for the buffer that sits between the dispatcher and the
QueueProcessor in queued processing mode.

- enqueue() stores an inbound message and returns a storage id
- dequeue_batch() removes up to N items from pending storage
- ack() reports each item's outcome back to storage

Acknowledgement is bookkeeping for the in-memory store. Persistent stores
may use a failed ack to redeliver the item.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from relayrpc.protocol.message import SignedMessage


class AckStatus(str, Enum):
    """Outcome reported for a processed item."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class AckResult:
    status: AckStatus
    error: str | None = None
    # False for failures that redelivery cannot fix
    retryable: bool = True
    acked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def success(cls) -> "AckResult":
        return cls(status=AckStatus.SUCCESS)

    @classmethod
    def failed(cls, error: str, retryable: bool = True) -> "AckResult":
        return cls(status=AckStatus.FAILED, error=error, retryable=retryable)


@dataclass
class QueueItem:
    """An inbound message held in storage."""
    storage_id: str
    event: SignedMessage
    attempts: int = 1


class EventStorage(ABC):
    """
    Abstract interface for event storage implementations.

    All methods are coroutines so that persistent backends can do I/O.
    """

    @abstractmethod
    async def enqueue(self, event: SignedMessage) -> str:
        """
        Store an inbound message.

        Returns:
            Storage id for the item

        Raises:
            StorageClosedError: If the storage was shut down
            QueueFullError: If the storage is at capacity
        """
        ...

    @abstractmethod
    async def dequeue_batch(self, size: int) -> list[QueueItem]:
        """
        Remove up to `size` items, oldest first.

        Returns:
            Dequeued items (possibly empty)
        """
        ...

    @abstractmethod
    async def ack(self, storage_id: str, result: AckResult) -> None:
        """
        Report the outcome of processing an item.

        Args:
            storage_id: Id returned by enqueue
            result: Success or failure with an error message
        """
        ...

    @abstractmethod
    async def size(self) -> int:
        """Number of items waiting to be dequeued."""
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop accepting new items and release resources."""
        ...


# =============================================================================
# Exceptions
# =============================================================================

class EventStorageError(Exception):
    """Base exception for event storage errors."""
    pass


class StorageClosedError(EventStorageError):
    """Storage has been shut down."""
    pass


class QueueFullError(EventStorageError):
    """Storage is at capacity."""
    def __init__(self, queue_size: int, max_size: int):
        self.queue_size = queue_size
        self.max_size = max_size
        super().__init__(f"Queue full: {queue_size}/{max_size}")
