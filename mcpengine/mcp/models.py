"""Pydantic models for MCP JSON-RPC 2.0 protocol."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator

from mcpengine.mcp.errors import make_error_data


# =============================================================================
# JSON-RPC 2.0 Base Models
# =============================================================================

JSONRPC_VERSION = "2.0"

# Exactly a JSON integer or string; true and 1.0 are not ids
RequestId = StrictInt | StrictStr


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request object."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: str
    params: dict[str, Any] | list[Any] | None = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Wire form; ``params`` is omitted when absent."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification: a request without an id, never answered."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | list[Any] | None = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        return data


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response object.

    Carries exactly one of ``result`` or ``error``. A ``result`` of ``None``
    is legitimate as long as it was given explicitly.
    """

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId | None = None
    result: Any = None
    error: JsonRpcError | None = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "JsonRpcResponse":
        has_result = "result" in self.model_fields_set
        has_error = self.error is not None
        if has_result == has_error:
            raise ValueError("response must carry exactly one of 'result' or 'error'")
        return self

    @classmethod
    def success(cls, id: RequestId | None, result: Any) -> "JsonRpcResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(
        cls,
        id: RequestId | None,
        code: int,
        message: str | None = None,
        data: Any = None,
    ) -> "JsonRpcResponse":
        """Error response; ``message`` defaults to the standard text for ``code``."""
        return cls(id=id, error=JsonRpcError(**make_error_data(code, message, data)))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Custom serialization to emit exactly one of result/error."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump()
        else:
            data["result"] = self.result
        return data


# Closed set of wire messages, discriminated by field presence on decode
Message = JsonRpcRequest | JsonRpcResponse | JsonRpcNotification


# =============================================================================
# MCP Content Types
# =============================================================================


class TextContent(BaseModel):
    """Text content returned by tools and prompts."""

    type: Literal["text"] = "text"
    text: str


class ResourceContents(BaseModel):
    """Contents of a resource as returned by ``resources/read``."""

    uri: str
    mimeType: str | None = None
    text: str


class PromptMessage(BaseModel):
    """A single message rendered by ``prompts/get``."""

    role: Literal["user", "assistant"] = "user"
    content: TextContent


# =============================================================================
# MCP Capability Descriptors
# =============================================================================


class Tool(BaseModel):
    """MCP tool definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name (lowercase with hyphens)")
    description: str = Field("", description="Human-readable description")
    inputSchema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for tool input",
    )


class Resource(BaseModel):
    """MCP resource definition."""

    model_config = ConfigDict(frozen=True)

    uri: str
    name: str
    description: str = ""
    mimeType: str | None = None


class PromptArgument(BaseModel):
    """An argument accepted by a prompt template."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    required: bool = False


class Prompt(BaseModel):
    """MCP prompt definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    arguments: tuple[PromptArgument, ...] = ()


# =============================================================================
# MCP Protocol Models
# =============================================================================


class ClientInfo(BaseModel):
    """Client information sent during initialization."""

    name: str
    version: str


class ServerInfo(BaseModel):
    """Server information returned during initialization."""

    name: str
    version: str


class ServerCapabilities(BaseModel):
    """Server capabilities; an absent entry means the feature is unsupported."""

    tools: dict[str, Any] | None = None
    resources: dict[str, Any] | None = None
    prompts: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None


class InitializeParams(BaseModel):
    """Parameters for initialize request."""

    protocolVersion: str
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: ClientInfo


class InitializeResult(BaseModel):
    """Result of initialize request."""

    protocolVersion: str
    capabilities: ServerCapabilities
    serverInfo: ServerInfo


class ToolsListResult(BaseModel):
    """Result of tools/list request."""

    tools: list[Tool]


class ToolCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    """Result of a tool call."""

    content: list[TextContent]
    isError: bool = False

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(part.text for part in self.content)


class ResourcesListResult(BaseModel):
    """Result of resources/list request."""

    resources: list[Resource]


class ResourceReadParams(BaseModel):
    """Parameters for resources/read request."""

    uri: str


class ResourceReadResult(BaseModel):
    """Result of resources/read request."""

    contents: list[ResourceContents]


class PromptsListResult(BaseModel):
    """Result of prompts/list request."""

    prompts: list[Prompt]


class PromptGetParams(BaseModel):
    """Parameters for prompts/get request."""

    name: str
    arguments: dict[str, str] = Field(default_factory=dict)


class PromptGetResult(BaseModel):
    """Result of prompts/get request."""

    description: str | None = None
    messages: list[PromptMessage]
