"""JSON-RPC 2.0 / MCP error codes, error response helpers and exceptions."""

from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700  # Invalid JSON was received
INVALID_REQUEST = -32600  # The JSON sent is not a valid Request object
METHOD_NOT_FOUND = -32601  # The method does not exist / is not available
INVALID_PARAMS = -32602  # Invalid method parameter(s)
INTERNAL_ERROR = -32603  # Internal JSON-RPC error

# MCP-specific error codes (server-defined, between -32000 and -32099)
INVALID_METHOD = -32000  # Method exists but cannot be used this way
RESOURCE_NOT_FOUND = -32001  # No resource registered under the uri
TOOL_NOT_FOUND = -32002  # No tool registered under the name
PROMPT_NOT_FOUND = -32003  # No prompt registered under the name


def error_message(code: int) -> str:
    """Get the standard message for a JSON-RPC error code."""
    messages = {
        PARSE_ERROR: "Parse error",
        INVALID_REQUEST: "Invalid Request",
        METHOD_NOT_FOUND: "Method not found",
        INVALID_PARAMS: "Invalid params",
        INTERNAL_ERROR: "Internal error",
        INVALID_METHOD: "Invalid method",
        RESOURCE_NOT_FOUND: "Resource not found",
        TOOL_NOT_FOUND: "Tool not found",
        PROMPT_NOT_FOUND: "Prompt not found",
    }
    return messages.get(code, "Unknown error")


def make_error_data(code: int, message: str | None = None, data: Any = None) -> dict[str, Any]:
    """Create an error object for JSON-RPC response."""
    error: dict[str, Any] = {
        "code": code,
        "message": message or error_message(code),
    }
    if data is not None:
        error["data"] = data
    return error


# =============================================================================
# Exceptions
# =============================================================================


class McpError(Exception):
    """Base error for everything raised by the protocol engine."""


class RpcError(McpError):
    """A protocol-level error that travels on the wire as an error object.

    Method handlers raise it to answer with an explicit error; the client
    raises it when a response carries ``error`` instead of ``result``.
    """

    def __init__(self, code: int, message: str | None = None, data: Any = None) -> None:
        self.code = code
        self.message = message or error_message(code)
        self.data = data
        super().__init__(f"RPC error {code}: {self.message}")


class MessageParseError(RpcError):
    """A raw line could not be decoded into a JSON-RPC message."""

    def __init__(
        self,
        code: int,
        message: str | None = None,
        request_id: int | str | None = None,
    ) -> None:
        super().__init__(code, message)
        self.request_id = request_id


class TransportError(McpError):
    """The underlying byte stream could not be acquired, read or written."""


class ConnectionLostError(McpError):
    """The connection went away while a call was outstanding."""


class NotConnectedError(ConnectionLostError):
    """A call or notification was attempted while the client is not connected."""


class CallTimeoutError(McpError, TimeoutError):
    """No response arrived for a call within its timeout."""

    def __init__(self, method: str, request_id: int | str, timeout: float) -> None:
        self.method = method
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"Call {method!r} (id={request_id}) timed out after {timeout:g}s")
