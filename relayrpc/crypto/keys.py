"""
Key Utilities

Identities are x-only secp256k1 public keys rendered as 64 lowercase hex
characters. Keys may be supplied as:
- raw bytes (32 bytes)
- 64-character hex strings
- bech32 strings: "npub1..." for public keys, "nsec1..." for secret keys

Everything is normalized to one canonical form at the API boundary so the
rest of the package only ever compares hex strings.
"""

import re
import secrets

from bech32 import bech32_decode, bech32_encode, convertbits
from cryptography.hazmat.primitives.asymmetric import ec

from relayrpc.errors import InvalidKeyFormat

NPUB_PREFIX = "npub"
NSEC_PREFIX = "nsec"

# Order of the secp256k1 group
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def is_hex64(value: object) -> bool:
    return isinstance(value, str) and bool(_HEX64.match(value))


def is_npub(value: object) -> bool:
    return isinstance(value, str) and value.startswith(NPUB_PREFIX + "1")


def is_nsec(value: object) -> bool:
    return isinstance(value, str) and value.startswith(NSEC_PREFIX + "1")


def _decode_bech32(value: str, expected_prefix: str) -> bytes:
    hrp, data = bech32_decode(value)
    if hrp != expected_prefix or data is None:
        raise InvalidKeyFormat(f"Invalid {expected_prefix} key")
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        raise InvalidKeyFormat(f"Invalid {expected_prefix} key")
    return bytes(decoded)


def _encode_bech32(prefix: str, key: bytes) -> str:
    encoded = bech32_encode(prefix, convertbits(key, 8, 5))
    if encoded is None:
        raise InvalidKeyFormat(f"Cannot encode {prefix} key")
    return encoded


def decode_nsec(value: str) -> bytes:
    if not is_nsec(value):
        raise InvalidKeyFormat("Invalid nsec key")
    return _decode_bech32(value, NSEC_PREFIX)


def decode_npub(value: str) -> str:
    if not is_npub(value):
        raise InvalidKeyFormat("Invalid npub key")
    return _decode_bech32(value, NPUB_PREFIX).hex()


def normalize_secret_key(secret: bytes | bytearray | str) -> bytes:
    """
    Convert a secret key (bytes | hex | nsec) to 32 raw bytes.

    Raises:
        InvalidKeyFormat: For any other input, or an out-of-range scalar
    """
    if isinstance(secret, (bytes, bytearray)):
        key = bytes(secret)
    elif is_nsec(secret):
        key = decode_nsec(secret)
    elif is_hex64(secret):
        key = bytes.fromhex(secret)
    else:
        raise InvalidKeyFormat("Unsupported secret key format")

    if len(key) != 32:
        raise InvalidKeyFormat("Secret key must be 32 bytes")
    if not 0 < int.from_bytes(key, "big") < CURVE_ORDER:
        raise InvalidKeyFormat("Secret key is out of range")
    return key


def secret_to_hex(secret: bytes | bytearray | str) -> str:
    return normalize_secret_key(secret).hex()


def public_to_hex(pubkey: bytes | bytearray | str) -> str:
    """
    Convert a public key (bytes | hex | npub) to lowercase hex.

    Raises:
        InvalidKeyFormat: For any other input
    """
    if isinstance(pubkey, (bytes, bytearray)):
        if len(pubkey) != 32:
            raise InvalidKeyFormat("Public key must be 32 bytes")
        return bytes(pubkey).hex()
    if is_npub(pubkey):
        return decode_npub(pubkey)
    if is_hex64(pubkey):
        return pubkey.lower()
    raise InvalidKeyFormat("Unsupported public key format")


def encode_nsec(secret: bytes | bytearray | str) -> str:
    return _encode_bech32(NSEC_PREFIX, normalize_secret_key(secret))


def encode_npub(pubkey: bytes | bytearray | str) -> str:
    return _encode_bech32(NPUB_PREFIX, bytes.fromhex(public_to_hex(pubkey)))


def private_key_object(secret: bytes | bytearray | str) -> ec.EllipticCurvePrivateKey:
    """Load a secret key as a cryptography private key object."""
    key = normalize_secret_key(secret)
    return ec.derive_private_key(int.from_bytes(key, "big"), ec.SECP256K1())


def derive_public_key(secret: bytes | bytearray | str) -> str:
    """Derive the x-only public identity (hex) for a secret key."""
    numbers = private_key_object(secret).public_key().public_numbers()
    return numbers.x.to_bytes(32, "big").hex()


def generate_secret_key() -> bytes:
    """Generate a fresh random secret key."""
    while True:
        candidate = secrets.token_bytes(32)
        if 0 < int.from_bytes(candidate, "big") < CURVE_ORDER:
            return candidate
