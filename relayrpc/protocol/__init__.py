# Protocol
# RPC envelopes (request / reply JSON) and the signed relay messages that carry them

from relayrpc.protocol.envelope import (
    INVALID_JSON,
    MISSING_METHOD,
    RpcRequest,
    RpcResponse,
    new_correlation_id,
    parse_request,
    parse_response,
    create_request,
    create_result,
    create_error,
)
from relayrpc.protocol.message import (
    ENCRYPTED_DIRECT_MESSAGE,
    RECIPIENT_TAG,
    REFERENCE_TAG,
    FilterBuilder,
    MessageFilter,
    SignedMessage,
    UnsignedMessage,
    build_filter,
    find_tag,
    now_seconds,
    validate_filter_builder,
)

__all__ = [
    # Envelope
    "INVALID_JSON",
    "MISSING_METHOD",
    "RpcRequest",
    "RpcResponse",
    "new_correlation_id",
    "parse_request",
    "parse_response",
    "create_request",
    "create_result",
    "create_error",
    # Wire messages
    "ENCRYPTED_DIRECT_MESSAGE",
    "RECIPIENT_TAG",
    "REFERENCE_TAG",
    "FilterBuilder",
    "MessageFilter",
    "SignedMessage",
    "UnsignedMessage",
    "build_filter",
    "find_tag",
    "now_seconds",
    "validate_filter_builder",
]
