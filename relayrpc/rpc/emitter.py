"""
Reply Emitter

Shared outbound path for client requests and server replies: encrypt for
a counterpart, sign, and publish to every configured relay.

Publishing succeeds when at least one relay accepted the message. Partial
failures are logged by the transport; only a total failure raises.
"""

import logging
from typing import Callable

from relayrpc.crypto.ports import MessageCrypto
from relayrpc.protocol.envelope import RpcResponse
from relayrpc.protocol.message import (
    ENCRYPTED_DIRECT_MESSAGE,
    RECIPIENT_TAG,
    REFERENCE_TAG,
    SignedMessage,
    UnsignedMessage,
    now_seconds,
)
from relayrpc.transport.ports import Transport

logger = logging.getLogger(__name__)


class ReplyEmitter:
    """Seals and publishes direct messages for one identity."""

    def __init__(
        self,
        transport: Transport,
        crypto: MessageCrypto,
        secret_key: bytes,
        relays: list[str],
        on_error: Callable[[Exception], None] | None = None,
    ):
        """
        Args:
            transport: Relay transport to publish through
            crypto: Encryption and signing provider
            secret_key: Sender's secret key
            relays: Relay URLs to publish to
            on_error: Called with the exception when reply() fails
        """
        self._transport = transport
        self._crypto = crypto
        self._secret_key = secret_key
        self.public_key = crypto.public_key(secret_key)
        self.relays = relays
        self._on_error = on_error

    def seal(
        self,
        recipient: str,
        plaintext: str,
        tags: list[list[str]] | None = None,
        created_at: int | None = None,
    ) -> SignedMessage:
        """
        Encrypt plaintext for `recipient` and sign the resulting message.

        The recipient tag always comes first; `tags` are appended after it.
        """
        content = self._crypto.encrypt(self._secret_key, recipient, plaintext)
        unsigned = UnsignedMessage(
            pubkey=self.public_key,
            created_at=created_at if created_at is not None else now_seconds(),
            kind=ENCRYPTED_DIRECT_MESSAGE,
            tags=[[RECIPIENT_TAG, recipient], *(tags or [])],
            content=content,
        )
        return self._crypto.sign(unsigned, self._secret_key)

    def decrypt(self, counterpart: str, ciphertext: str) -> str:
        """Decrypt a message received from `counterpart`. Raises DecryptionFailure."""
        return self._crypto.decrypt(self._secret_key, counterpart, ciphertext)

    async def publish(self, message: SignedMessage) -> list[str]:
        """
        Publish to all relays.

        Raises:
            TransportPublishFailure: If no relay accepted the message
        """
        accepted = await self._transport.publish(self.relays, message)
        logger.debug(f"Published {message.short_id()} to {len(accepted)}/{len(self.relays)} relays")
        return accepted

    async def reply(
        self,
        recipient: str,
        response: RpcResponse,
        reply_to: str | None = None,
    ) -> bool:
        """
        Send an RpcResponse. Never raises.

        Args:
            recipient: Hex identity of the requester
            response: Reply envelope
            reply_to: Id of the request message, added as a back-reference tag

        Returns:
            True if at least one relay accepted the reply
        """
        try:
            tags = [[REFERENCE_TAG, reply_to]] if reply_to else None
            message = self.seal(recipient, response.model_dump_json(), tags=tags)
            await self.publish(message)
            logger.info(f"Replied to {recipient[:8]}")
            return True
        except Exception as e:
            logger.error(f"Error sending reply to {recipient[:8]}: {e}")
            if self._on_error is not None:
                self._on_error(e)
            return False
