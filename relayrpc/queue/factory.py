"""
Event Storage Factory

Creates the event storage used by queued processing mode, based on
configuration or environment variables.

Supported backends:
- memory: In-process storage for development/testing
- redis: Redis lists, shared and restart-safe

Environment Variables:
- EVENT_STORAGE_BACKEND: Storage backend type (memory, redis)
- REDIS_URL: Redis connection URL (for redis backend)
"""

import logging
import os

from relayrpc.queue.memory import InMemoryEventStorage
from relayrpc.queue.ports import EventStorage

logger = logging.getLogger(__name__)

# Valid backend types
VALID_BACKENDS = {"memory", "redis"}


def create_event_storage(
    backend: str | None = None,
    redis_url: str | None = None,
    max_size: int = 10000,
    **kwargs
) -> EventStorage:
    """
    Create event storage based on configuration or environment.

    Args:
        backend: "memory" or "redis". Read from EVENT_STORAGE_BACKEND if
                 not specified.
        redis_url: Redis connection URL. Read from REDIS_URL if not specified.
        max_size: Maximum number of pending items
        **kwargs: Backend-specific options (key_prefix, max_redeliveries,
                  ack_ttl_seconds, client)

    Returns:
        Configured EventStorage instance

    Raises:
        ValueError: If backend is invalid
        ImportError: If required dependencies are not installed
    """
    if backend is None:
        backend = os.getenv("EVENT_STORAGE_BACKEND", "memory")

    backend = backend.lower()

    if backend not in VALID_BACKENDS:
        raise ValueError(
            f"Unknown event storage backend: {backend}. "
            f"Valid options: {', '.join(sorted(VALID_BACKENDS))}"
        )

    if backend == "memory":
        logger.info(f"Creating in-memory event storage (max_size={max_size})")
        return InMemoryEventStorage(max_size=max_size)

    if redis_url is None:
        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")

    from relayrpc.queue.redis_queue import RedisEventStorage

    logger.info(f"Creating Redis event storage (url={redis_url})")
    return RedisEventStorage(
        redis_url=redis_url,
        key_prefix=kwargs.get("key_prefix", "relayrpc:events"),
        max_size=max_size,
        max_redeliveries=kwargs.get("max_redeliveries", 3),
        ack_ttl_seconds=kwargs.get("ack_ttl_seconds", 3600),
        client=kwargs.get("client"),
    )


def get_available_backends() -> list[str]:
    """List storage backends whose dependencies are installed."""
    available = ["memory"]

    try:
        import redis.asyncio  # noqa: F401
        available.append("redis")
    except ImportError:
        pass

    return available
