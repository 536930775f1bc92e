"""
relayrpc error types.

Outbound errors (RequestTimeout, RemoteError, TransportPublishFailure) are
surfaced to callers of RpcClient. Inbound errors never escape the server:
they become structured replies or failed queue acknowledgements.
"""

from typing import Any


class RelayRpcError(Exception):
    """Base exception for relayrpc errors."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class RequestTimeout(RelayRpcError):
    """No matching reply arrived before the deadline. Safe to retry."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__("request_timeout", message, {"timeout": timeout})
        self.timeout = timeout


class RemoteError(RelayRpcError):
    """The counterpart answered with a non-null error field."""

    def __init__(self, message: str, request_id: str | None = None):
        super().__init__("remote_error", message, {"id": request_id})
        self.request_id = request_id


class TransportPublishFailure(RelayRpcError):
    """No relay accepted the outbound message."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{url}: {err}" for url, err in self.errors.items())
        super().__init__(
            "publish_failed",
            f"Publish failed on all relays ({summary or 'no relays configured'})",
            {"errors": self.errors},
        )


class DecryptionFailure(RelayRpcError):
    """Ciphertext was malformed or not addressed to this key."""

    def __init__(self, message: str):
        super().__init__("decryption_failed", message)


class MalformedRequest(RelayRpcError):
    """Request body is not valid JSON or lacks a method."""

    def __init__(self, message: str):
        super().__init__("malformed_request", message)


class MethodNotFound(RelayRpcError):
    def __init__(self, method: str):
        super().__init__("method_not_found", f"Method not found: {method}")
        self.method = method


class PermissionDenied(RelayRpcError):
    def __init__(self, method: str):
        super().__init__("permission_denied", f"Permission denied for method: {method}")
        self.method = method


class SenderNotAllowed(RelayRpcError):
    """Sender lost whitelist membership between enqueue and processing."""

    def __init__(self, sender: str | None = None):
        super().__init__("sender_not_allowed", "sender_not_allowed", {"sender": sender})
        self.sender = sender


class EventProcessingTimeout(RelayRpcError):
    def __init__(self, timeout: float | None = None):
        super().__init__("event_timeout", "Event processing timeout", {"timeout": timeout})
        self.timeout = timeout


class InvalidKeyFormat(RelayRpcError, ValueError):
    def __init__(self, message: str):
        super().__init__("invalid_key_format", message)
