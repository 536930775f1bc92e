# relayrpc - RPC over relay direct messages
# Correlated request/reply calls and an authorized, rate-limited server pipeline
# on top of signed, encrypted publish/subscribe messaging

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from relayrpc.rpc import (
    IncomingMessage,
    MessageReply,
    MessageSent,
    RpcClient,
    RpcServer,
)

from relayrpc.policy import AuthConfig, AuthMode

from relayrpc.config import ProcessingMode, RelaySettings, settings_from_env

from relayrpc.errors import (
    RelayRpcError,
    RequestTimeout,
    RemoteError,
    TransportPublishFailure,
    DecryptionFailure,
    MalformedRequest,
    MethodNotFound,
    PermissionDenied,
    SenderNotAllowed,
    EventProcessingTimeout,
    InvalidKeyFormat,
)

__all__ = [
    "__version__",
    # RPC
    "IncomingMessage",
    "MessageReply",
    "MessageSent",
    "RpcClient",
    "RpcServer",
    # Authorization
    "AuthConfig",
    "AuthMode",
    # Configuration
    "ProcessingMode",
    "RelaySettings",
    "settings_from_env",
    # Errors
    "RelayRpcError",
    "RequestTimeout",
    "RemoteError",
    "TransportPublishFailure",
    "DecryptionFailure",
    "MalformedRequest",
    "MethodNotFound",
    "PermissionDenied",
    "SenderNotAllowed",
    "EventProcessingTimeout",
    "InvalidKeyFormat",
]
