"""MCP method handlers for JSON-RPC requests and notifications."""

import logging
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from mcpengine.config.loader import Settings, get_settings
from mcpengine.mcp.errors import INVALID_PARAMS, RpcError
from mcpengine.mcp.models import (
    InitializeParams,
    InitializeResult,
    PromptGetParams,
    PromptsListResult,
    ResourceReadParams,
    ResourceReadResult,
    ResourcesListResult,
    ServerCapabilities,
    ServerInfo,
    ToolCallParams,
    ToolsListResult,
)
from mcpengine.mcp.registry import CapabilityRegistry
from mcpengine.utils.logging import set_log_level

logger = logging.getLogger(__name__)

# Protocol versions this server can speak, newest first
SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2024-11-05")

RequestHandler = Callable[[dict[str, Any]], Awaitable[Any]]
NotificationHandler = Callable[[dict[str, Any]], Awaitable[None]]

M = TypeVar("M", bound=BaseModel)


def _parse_params(model: type[M], params: dict[str, Any], method: str) -> M:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        logger.warning(f"Invalid {method} params: {e}")
        raise RpcError(INVALID_PARAMS, f"Invalid params for {method}: {e}") from e


class MCPHandlers:
    """Handlers for MCP protocol methods, backed by a capability registry."""

    def __init__(self, registry: CapabilityRegistry, settings: Settings | None = None):
        self.registry = registry
        self.settings = settings or get_settings()
        self.client_info: dict[str, Any] | None = None

    def negotiate_version(self, requested: str | None) -> str:
        """Echo the client's version when supported, else offer our own."""
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            return requested  # type: ignore[return-value]
        if self.settings.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            return self.settings.protocol_version
        return SUPPORTED_PROTOCOL_VERSIONS[0]

    def capabilities(self) -> ServerCapabilities:
        """Advertise each capability kind the registry actually serves."""
        return ServerCapabilities(
            tools={"listChanged": False} if self.registry.tool_count else None,
            resources=(
                {"subscribe": False, "listChanged": False}
                if self.registry.resource_count
                else None
            ),
            prompts={"listChanged": False} if self.registry.prompt_count else None,
            logging={},
        )

    async def handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the initialize request."""
        requested = params.get("protocolVersion")
        try:
            init_params = InitializeParams(**params)
            self.client_info = init_params.clientInfo.model_dump()
        except ValidationError as e:
            logger.warning(f"Invalid initialize params: {e}")
            # Still proceed with defaults

        result = InitializeResult(
            protocolVersion=self.negotiate_version(
                requested if isinstance(requested, str) else None
            ),
            capabilities=self.capabilities(),
            serverInfo=ServerInfo(
                name=self.settings.server_name,
                version=self.settings.server_version,
            ),
        )
        return result.model_dump(exclude_none=True)

    async def handle_initialized(self, params: dict[str, Any]) -> None:
        """Handle the notifications/initialized notification (no response)."""
        logger.info("Client confirmed initialization")

    async def handle_set_level(self, params: dict[str, Any]) -> None:
        """Handle logging/setLevel; an unknown level is logged and ignored."""
        level = params.get("level")
        if not isinstance(level, str):
            logger.warning(f"logging/setLevel without a level: {params}")
            return
        try:
            set_log_level(level)
        except ValueError as e:
            logger.warning(str(e))
            return
        logger.info(f"Log level set to {level}")

    async def handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the tools/list request."""
        result = ToolsListResult(tools=self.registry.list_tools())
        return result.model_dump()

    async def handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle the tools/call request."""
        call_params = _parse_params(ToolCallParams, params, "tools/call")
        logger.info(f"Calling tool: {call_params.name}")
        result = await self.registry.call_tool(call_params.name, call_params.arguments)
        return result.model_dump()

    async def handle_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        result = ResourcesListResult(resources=self.registry.list_resources())
        return result.model_dump()

    async def handle_resources_read(self, params: dict[str, Any]) -> dict[str, Any]:
        read_params = _parse_params(ResourceReadParams, params, "resources/read")
        contents = await self.registry.read_resource(read_params.uri)
        return ResourceReadResult(contents=contents).model_dump()

    async def handle_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        result = PromptsListResult(prompts=self.registry.list_prompts())
        return result.model_dump(mode="json")

    async def handle_prompts_get(self, params: dict[str, Any]) -> dict[str, Any]:
        get_params = _parse_params(PromptGetParams, params, "prompts/get")
        result = await self.registry.get_prompt_messages(get_params.name, get_params.arguments)
        return result.model_dump(exclude_none=True)

    def request_handlers(self) -> dict[str, RequestHandler]:
        """Static method table for requests."""
        return {
            "initialize": self.handle_initialize,
            "ping": self.handle_ping,
            "tools/list": self.handle_tools_list,
            "tools/call": self.handle_tools_call,
            "resources/list": self.handle_resources_list,
            "resources/read": self.handle_resources_read,
            "prompts/list": self.handle_prompts_list,
            "prompts/get": self.handle_prompts_get,
        }

    def notification_handlers(self) -> dict[str, NotificationHandler]:
        """Static method table for notifications."""
        return {
            "notifications/initialized": self.handle_initialized,
            "logging/setLevel": self.handle_set_level,
        }
