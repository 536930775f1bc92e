"""
Event Dispatcher

Server entry point for inbound messages. Cheap checks run before any
decryption:

1. The message must be addressed to this server (first "p" tag)
2. The sender must pass the global whitelist

Then the message is processed inline (immediate mode) or stored for the
QueueProcessor (queued mode). on_event() never raises.
"""

import logging
from dataclasses import dataclass
from typing import Any

from relayrpc.config import ProcessingMode
from relayrpc.policy.whitelist import WhitelistStore
from relayrpc.protocol.message import SignedMessage
from relayrpc.queue.ports import EventStorage
from relayrpc.rpc.processing import RequestProcessor

logger = logging.getLogger(__name__)


@dataclass
class DispatcherStats:
    received: int = 0
    misaddressed: int = 0
    not_whitelisted: int = 0
    processed: int = 0
    enqueued: int = 0
    errors: int = 0


class EventDispatcher:
    """Filters inbound messages and routes them by processing mode."""

    def __init__(
        self,
        public_key: str,
        whitelist: WhitelistStore,
        processor: RequestProcessor,
        mode: ProcessingMode = ProcessingMode.IMMEDIATE,
        storage: EventStorage | None = None,
    ):
        if mode == ProcessingMode.QUEUED and storage is None:
            raise ValueError("Queued processing requires event storage")

        self._public_key = public_key
        self._whitelist = whitelist
        self._processor = processor
        self._mode = mode
        self._storage = storage
        self.stats = DispatcherStats()

    @property
    def mode(self) -> ProcessingMode:
        return self._mode

    async def on_event(self, message: SignedMessage) -> None:
        self.stats.received += 1
        try:
            if message.recipient != self._public_key:
                self.stats.misaddressed += 1
                return

            if not await self._whitelist.is_allowed(message.pubkey):
                self.stats.not_whitelisted += 1
                logger.info(f"Sender {message.pubkey[:8]} not in whitelist")
                return

            if self._mode == ProcessingMode.IMMEDIATE:
                await self._processor.process(message)
                self.stats.processed += 1
            else:
                await self._enqueue(message)

        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Error handling {message.short_id()}: {e}", exc_info=True)

    async def _enqueue(self, message: SignedMessage) -> None:
        try:
            storage_id = await self._storage.enqueue(message)
        except Exception as e:
            logger.error(f"Error storing event {message.short_id()}: {e}")
            return
        self.stats.enqueued += 1
        logger.info(f"Event {message.short_id()} queued as {storage_id}")

    def stats_dict(self) -> dict[str, Any]:
        return {
            "received": self.stats.received,
            "misaddressed": self.stats.misaddressed,
            "not_whitelisted": self.stats.not_whitelisted,
            "processed": self.stats.processed,
            "enqueued": self.stats.enqueued,
            "errors": self.stats.errors,
        }
