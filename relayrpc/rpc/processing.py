"""
Request Processing

Turns one inbound, already-addressed message into exactly one reply (or
none, when the payload cannot be decrypted). Shared by immediate and
queued processing.

Reply errors, in the order they are checked:
- "Invalid JSON format"                    id: null
- "Missing method field"                   id: null
- "Method not found: <name>"               id: echoed
- "Permission denied for method: <name>"   id: echoed
- <handler exception message>              id: echoed
"""

import logging
from typing import Any

from relayrpc.errors import (
    DecryptionFailure,
    MalformedRequest,
    MethodNotFound,
    PermissionDenied,
    SenderNotAllowed,
)
from relayrpc.policy.engine import AuthorizationEvaluator
from relayrpc.policy.whitelist import WhitelistStore
from relayrpc.protocol.envelope import create_error, create_result, parse_request
from relayrpc.protocol.message import SignedMessage
from relayrpc.queue.ports import QueueItem
from relayrpc.registry.registry import MethodRegistry
from relayrpc.rpc.emitter import ReplyEmitter

logger = logging.getLogger(__name__)


class RequestProcessor:
    """Decrypts, routes, authorizes and answers a request."""

    def __init__(
        self,
        emitter: ReplyEmitter,
        registry: MethodRegistry,
        evaluator: AuthorizationEvaluator,
        whitelist: WhitelistStore,
    ):
        self._emitter = emitter
        self._registry = registry
        self._evaluator = evaluator
        self._whitelist = whitelist

    async def process(self, message: SignedMessage) -> Any:
        """
        Handle one request message.

        Returns:
            The handler's result, or None when no handler ran

        Raises:
            Exception: Whatever the handler raised, after the error reply
                was sent
        """
        sender = message.pubkey

        try:
            plaintext = self._emitter.decrypt(sender, message.content)
        except DecryptionFailure as e:
            logger.warning(f"Dropping {message.short_id()} from {sender[:8]}: {e}")
            return None

        try:
            request = parse_request(plaintext)
        except MalformedRequest as e:
            await self._reply_error(message, e.message, None)
            return None

        registration = self._registry.get(request.method)
        if registration is None:
            await self._reply_error(message, MethodNotFound(request.method).message, request.id)
            return None

        if not await self._evaluator.is_allowed(request.method, sender, registration.auth_config):
            logger.info(f"Sender {sender[:8]} denied for {request.method}")
            await self._reply_error(message, PermissionDenied(request.method).message, request.id)
            return None

        try:
            result = await registration.invoke(request.params, message)
        except Exception as e:
            logger.error(f"Handler for {request.method} failed: {e}")
            await self._reply_error(message, str(e) or e.__class__.__name__, request.id)
            raise

        await self._emitter.reply(sender, create_result(request.id, result), reply_to=message.id)
        return result

    async def process_queued(self, item: QueueItem) -> Any:
        """
        Handle a message taken from event storage.

        The whitelist is checked again first, since it may have changed
        while the message was queued.

        Raises:
            SenderNotAllowed: If the sender is no longer whitelisted
        """
        if not await self._whitelist.is_allowed(item.event.pubkey):
            raise SenderNotAllowed(item.event.pubkey)
        return await self.process(item.event)

    async def _reply_error(self, message: SignedMessage, error: str, request_id: Any) -> None:
        await self._emitter.reply(message.pubkey, create_error(request_id, error), reply_to=message.id)
