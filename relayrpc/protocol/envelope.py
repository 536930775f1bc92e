"""
RPC Envelope Model

Requests and replies are JSON documents carried (encrypted) in the content
of a direct message:

    request: {"method": "add", "params": {"a": 5, "b": 3}, "id": "<corr id>"}
    reply:   {"id": "<corr id>", "result": {...}, "error": null}

The `id` is the correlation id chosen by the caller; a reply always echoes
the id of the request it answers. Replies to requests that could not be
parsed carry `"id": null`.
"""

import json
import secrets
import time
from typing import Any

from pydantic import BaseModel, Field

from relayrpc.errors import MalformedRequest

INVALID_JSON = "Invalid JSON format"
MISSING_METHOD = "Missing method field"


def new_correlation_id() -> str:
    """
    Generate a correlation id.

    Time plus randomness: unique across concurrent calls, not meant to be
    a secret.
    """
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}"


class RpcRequest(BaseModel):
    """A method invocation."""

    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: str | int | None = None


class RpcResponse(BaseModel):
    """The answer to an RpcRequest."""

    id: str | int | None = None
    result: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


def parse_request(plaintext: str) -> RpcRequest:
    """
    Parse a decrypted request body.

    Raises:
        MalformedRequest: With INVALID_JSON or MISSING_METHOD as the message.
            `details["id"]` carries the request id when one could be read.
    """
    try:
        data = json.loads(plaintext)
    except (TypeError, ValueError) as e:
        raise MalformedRequest(INVALID_JSON) from e

    if not isinstance(data, dict):
        raise MalformedRequest(INVALID_JSON)

    method = data.get("method")
    if not method or not isinstance(method, str):
        raise MalformedRequest(MISSING_METHOD)

    params = data.get("params")
    if not isinstance(params, dict):
        params = {}

    request_id = data.get("id")
    if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
        request_id = None

    return RpcRequest(method=method, params=params, id=request_id)


def parse_response(plaintext: str) -> RpcResponse:
    """Parse a decrypted reply body. Raises pydantic.ValidationError."""
    return RpcResponse.model_validate_json(plaintext)


# === Convenience constructors ===

def create_request(method: str, params: dict[str, Any] | None = None) -> RpcRequest:
    return RpcRequest(method=method, params=params or {}, id=new_correlation_id())


def create_result(request_id: str | int | None, result: Any) -> RpcResponse:
    return RpcResponse(id=request_id, result=result, error=None)


def create_error(request_id: str | int | None, message: str) -> RpcResponse:
    return RpcResponse(id=request_id, result=None, error=message)
