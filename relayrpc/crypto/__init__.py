# Crypto
# Key normalization, payload encryption and message signing

from relayrpc.crypto.keys import (
    decode_npub,
    decode_nsec,
    derive_public_key,
    encode_npub,
    encode_nsec,
    generate_secret_key,
    is_hex64,
    is_npub,
    is_nsec,
    normalize_secret_key,
    public_to_hex,
    secret_to_hex,
)
from relayrpc.crypto.ports import MessageCrypto
from relayrpc.crypto.secp256k1 import Secp256k1Crypto, compute_message_id

__all__ = [
    # Keys
    "decode_npub",
    "decode_nsec",
    "derive_public_key",
    "encode_npub",
    "encode_nsec",
    "generate_secret_key",
    "is_hex64",
    "is_npub",
    "is_nsec",
    "normalize_secret_key",
    "public_to_hex",
    "secret_to_hex",
    # Port + adapter
    "MessageCrypto",
    "Secp256k1Crypto",
    "compute_message_id",
]
