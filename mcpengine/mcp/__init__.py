"""MCP (Model Context Protocol) implementation with JSON-RPC 2.0 over stdio."""

from mcpengine.mcp.client import ClientState, McpClient
from mcpengine.mcp.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallTimeoutError,
    ConnectionLostError,
    McpError,
    NotConnectedError,
    RpcError,
    TransportError,
)
from mcpengine.mcp.models import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    TextContent,
    Tool,
    ToolCallResult,
)
from mcpengine.mcp.registry import CapabilityRegistry
from mcpengine.mcp.server import McpServer, ServerState
from mcpengine.mcp.transport import StdioTransport, Transport

__all__ = [
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonRpcNotification",
    "JsonRpcError",
    "Tool",
    "TextContent",
    "ToolCallResult",
    "CapabilityRegistry",
    "McpServer",
    "ServerState",
    "McpClient",
    "ClientState",
    "Transport",
    "StdioTransport",
    "McpError",
    "RpcError",
    "TransportError",
    "ConnectionLostError",
    "NotConnectedError",
    "CallTimeoutError",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
]
