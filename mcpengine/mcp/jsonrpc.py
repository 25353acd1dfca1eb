"""JSON-RPC 2.0 message decoding and encoding.

Every line on the wire is exactly one JSON object. Decoding classifies it
once, by field presence, into the closed :data:`Message` union:

* ``id`` and ``method``                -> :class:`JsonRpcRequest`
* ``id`` and ``result`` or ``error``   -> :class:`JsonRpcResponse`
* ``method`` without ``id``            -> :class:`JsonRpcNotification`

Anything else is malformed and raises :class:`MessageParseError`.
"""

import json
from typing import Any

from pydantic import ValidationError

from mcpengine.mcp.errors import INVALID_REQUEST, PARSE_ERROR, MessageParseError
from mcpengine.mcp.models import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
)


def _usable_id(data: dict[str, Any]) -> int | str | None:
    """Return the message id if it can be echoed back, else None."""
    value = data.get("id")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        return value
    return None


def parse_message(raw_data: str | bytes) -> Message:
    """
    Decode one raw line into a JSON-RPC message.

    Raises:
        MessageParseError: ``PARSE_ERROR`` when the line is not JSON,
            ``INVALID_REQUEST`` when it is JSON but not a valid message.
    """
    try:
        if isinstance(raw_data, bytes):
            raw_data = raw_data.decode("utf-8")
        data = json.loads(raw_data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageParseError(PARSE_ERROR, f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageParseError(INVALID_REQUEST, "JSON-RPC message must be an object")

    has_id = "id" in data
    request_id = _usable_id(data)

    if has_id and "method" in data:
        model: type[Message] = JsonRpcRequest
    elif has_id and ("result" in data or "error" in data):
        if "result" in data and "error" in data:
            raise MessageParseError(
                INVALID_REQUEST,
                "Response must not carry both 'result' and 'error'",
                request_id,
            )
        model = JsonRpcResponse
    elif "method" in data:
        model = JsonRpcNotification
    else:
        raise MessageParseError(INVALID_REQUEST, "Invalid JSON-RPC message", request_id)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MessageParseError(
            INVALID_REQUEST,
            f"Invalid JSON-RPC {model.__name__.removeprefix('JsonRpc').lower()}: {e}",
            request_id,
        ) from e


def error_response(error: MessageParseError) -> JsonRpcResponse:
    """Build the response that answers an undecodable line."""
    return JsonRpcResponse.failure(error.request_id, error.code, error.message)


def serialize_message(message: Message) -> str:
    """Serialize a message to a single line of JSON (no trailing newline)."""
    return json.dumps(message.model_dump(), ensure_ascii=False, separators=(",", ":"))
