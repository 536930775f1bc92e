"""
Event Queue Module

Buffers inbound messages for queued processing mode.

Components:
- EventStorage: Abstract interface for event storage implementations
- InMemoryEventStorage: Development/testing implementation
- RedisEventStorage: Redis-backed implementation with redelivery
- QueueProcessor: Rate-limited batch consumer

Environment Variables:
- EVENT_STORAGE_BACKEND: Storage backend (memory, redis)
- REDIS_URL: Redis connection URL
"""

from relayrpc.queue.ports import (
    AckResult,
    AckStatus,
    EventStorage,
    EventStorageError,
    QueueFullError,
    QueueItem,
    StorageClosedError,
)
from relayrpc.queue.memory import InMemoryEventStorage
from relayrpc.queue.processor import (
    DEFAULT_EVENT_TIMEOUT,
    MAX_PROCESSING_RATE,
    ProcessorStats,
    QueueProcessor,
    effective_rate,
)
from relayrpc.queue.factory import create_event_storage, get_available_backends

# Conditionally export backend-specific storage
_optional_exports: list[str] = []

try:
    from relayrpc.queue.redis_queue import REDIS_AVAILABLE, RedisEventStorage
    if REDIS_AVAILABLE:
        _optional_exports.append("RedisEventStorage")
except ImportError:
    pass

__all__ = [
    # Port interfaces
    "AckResult",
    "AckStatus",
    "EventStorage",
    "EventStorageError",
    "QueueFullError",
    "QueueItem",
    "StorageClosedError",
    # Implementations
    "InMemoryEventStorage",
    *_optional_exports,
    # Processor
    "DEFAULT_EVENT_TIMEOUT",
    "MAX_PROCESSING_RATE",
    "ProcessorStats",
    "QueueProcessor",
    "effective_rate",
    # Factory
    "create_event_storage",
    "get_available_backends",
]
