"""
secp256k1 Message Crypto

Adapter implementing MessageCrypto:

- Encryption (`cryptography`): ECDH over secp256k1; the shared point's x
  coordinate is the AES-256-CBC key. Content format is
  "<base64 ciphertext>?iv=<base64 iv>".
- Identity: SHA-256 over the canonical JSON array
  [0, pubkey, created_at, kind, tags, content].
- Signature (`coincurve`): 64-byte BIP-340 Schnorr over the identity digest,
  verifiable with the x-only public key alone.
"""

import base64
import hashlib
import json
import logging
import os

from coincurve import PrivateKey, PublicKeyXOnly
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from relayrpc.crypto.keys import derive_public_key, normalize_secret_key, private_key_object
from relayrpc.crypto.ports import MessageCrypto
from relayrpc.errors import DecryptionFailure
from relayrpc.protocol.message import SignedMessage, UnsignedMessage

logger = logging.getLogger(__name__)

IV_SEPARATOR = "?iv="
IV_LENGTH = 16
SIGNATURE_LENGTH = 64


def compute_message_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Content-hash identity of a message."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def schnorr_sign(secret_key: bytes, digest: bytes, aux_randomness: bytes | None = None) -> bytes:
    """BIP-340 signature over a 32-byte digest."""
    if aux_randomness is None:
        aux_randomness = os.urandom(32)
    return PrivateKey(normalize_secret_key(secret_key)).sign_schnorr(digest, aux_randomness)


def schnorr_verify(pubkey: str, digest: bytes, signature: bytes) -> bool:
    """Check a BIP-340 signature against an x-only public key (hex)."""
    if len(signature) != SIGNATURE_LENGTH or len(digest) != 32:
        return False
    return PublicKeyXOnly(bytes.fromhex(pubkey)).verify(signature, digest)


def _lift_x(pubkey: str) -> ec.EllipticCurvePublicKey:
    """Public key object for an x-only identity (even y)."""
    return ec.EllipticCurvePublicKey.from_encoded_point(
        ec.SECP256K1(), b"\x02" + bytes.fromhex(pubkey)
    )


class Secp256k1Crypto(MessageCrypto):
    """Default MessageCrypto implementation."""

    def public_key(self, secret_key: bytes) -> str:
        return derive_public_key(secret_key)

    def shared_secret(self, secret_key: bytes, counterpart: str) -> bytes:
        """ECDH x coordinate shared by the two identities."""
        return private_key_object(secret_key).exchange(ec.ECDH(), _lift_x(counterpart))

    def encrypt(self, secret_key: bytes, counterpart: str, plaintext: str) -> str:
        key = self.shared_secret(secret_key, counterpart)
        iv = os.urandom(IV_LENGTH)

        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return (
            base64.b64encode(ciphertext).decode("ascii")
            + IV_SEPARATOR
            + base64.b64encode(iv).decode("ascii")
        )

    def decrypt(self, secret_key: bytes, counterpart: str, ciphertext: str) -> str:
        body, separator, iv_b64 = ciphertext.partition(IV_SEPARATOR)
        if not separator or not body or not iv_b64:
            raise DecryptionFailure("Ciphertext is missing its iv")

        try:
            raw = base64.b64decode(body, validate=True)
            iv = base64.b64decode(iv_b64, validate=True)
            if len(iv) != IV_LENGTH:
                raise ValueError(f"iv must be {IV_LENGTH} bytes")

            key = self.shared_secret(secret_key, counterpart)
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()

            unpadder = padding.PKCS7(128).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            raise DecryptionFailure(f"Cannot decrypt message: {e}") from e

    def sign(self, message: UnsignedMessage, secret_key: bytes) -> SignedMessage:
        pubkey = self.public_key(secret_key)
        if message.pubkey and message.pubkey != pubkey:
            raise ValueError("Message pubkey does not match the signing key")

        message_id = compute_message_id(
            pubkey, message.created_at, message.kind, message.tags, message.content
        )
        signature = schnorr_sign(secret_key, bytes.fromhex(message_id))

        return SignedMessage(
            id=message_id,
            pubkey=pubkey,
            created_at=message.created_at,
            kind=message.kind,
            tags=[list(tag) for tag in message.tags],
            content=message.content,
            sig=signature.hex(),
        )

    def verify(self, message: SignedMessage) -> bool:
        expected = compute_message_id(
            message.pubkey, message.created_at, message.kind, message.tags, message.content
        )
        if expected != message.id:
            return False

        try:
            valid = schnorr_verify(
                message.pubkey, bytes.fromhex(message.id), bytes.fromhex(message.sig)
            )
        except ValueError as e:
            logger.debug(f"Signature check failed for {message.short_id()}: {e}")
            return False

        if not valid:
            logger.debug(f"Signature check failed for {message.short_id()}")
        return valid
