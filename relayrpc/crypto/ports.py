"""
Crypto Port Interface

The RPC core never touches ciphers or signatures directly; it goes through
this interface. Adapters (secp256k1, test doubles) implement it.

All operations are synchronous: they are pure computation on small payloads.
"""

from abc import ABC, abstractmethod

from relayrpc.protocol.message import SignedMessage, UnsignedMessage


class MessageCrypto(ABC):
    """Payload encryption plus message signing for one key scheme."""

    @abstractmethod
    def public_key(self, secret_key: bytes) -> str:
        """Return the hex identity for a secret key."""
        ...

    @abstractmethod
    def encrypt(self, secret_key: bytes, counterpart: str, plaintext: str) -> str:
        """
        Encrypt plaintext for a counterpart identity.

        Args:
            secret_key: Sender's 32-byte secret key
            counterpart: Recipient's hex identity
            plaintext: UTF-8 text

        Returns:
            Ciphertext string suitable for a message's content field
        """
        ...

    @abstractmethod
    def decrypt(self, secret_key: bytes, counterpart: str, ciphertext: str) -> str:
        """
        Decrypt ciphertext received from a counterpart identity.

        Raises:
            DecryptionFailure: If the ciphertext is malformed or was not
                encrypted for this key pair
        """
        ...

    @abstractmethod
    def sign(self, message: UnsignedMessage, secret_key: bytes) -> SignedMessage:
        """Assign the content-hash id and signature."""
        ...

    @abstractmethod
    def verify(self, message: SignedMessage) -> bool:
        """Check id and signature. Never raises."""
        ...
