"""Capability registry for MCP tools, resources and prompts."""

import importlib
import logging
from typing import Any, Callable, Awaitable

from mcpengine.mcp.errors import (
    INVALID_PARAMS,
    PROMPT_NOT_FOUND,
    RESOURCE_NOT_FOUND,
    TOOL_NOT_FOUND,
    RpcError,
)
from mcpengine.mcp.models import (
    Prompt,
    PromptArgument,
    PromptGetResult,
    PromptMessage,
    Resource,
    ResourceContents,
    TextContent,
    Tool,
    ToolCallResult,
)

logger = logging.getLogger(__name__)

# Type aliases for capability handlers
ToolHandler = Callable[[dict[str, Any]], Awaitable[list[TextContent]]]
ResourceReader = Callable[[str], Awaitable[str]]
PromptRenderer = Callable[[dict[str, str]], Awaitable[list[PromptMessage]]]


class ToolDefinition:
    """A registered tool with its descriptor and handler."""

    def __init__(self, tool: Tool, handler: ToolHandler):
        self.tool = tool
        self.handler = handler

    @property
    def name(self) -> str:
        return self.tool.name


class ResourceDefinition:
    """A registered resource with its descriptor and reader."""

    def __init__(self, resource: Resource, reader: ResourceReader):
        self.resource = resource
        self.reader = reader

    @property
    def uri(self) -> str:
        return self.resource.uri


class PromptDefinition:
    """A registered prompt with its descriptor and renderer."""

    def __init__(self, prompt: Prompt, renderer: PromptRenderer):
        self.prompt = prompt
        self.renderer = renderer

    @property
    def name(self) -> str:
        return self.prompt.name


class CapabilityRegistry:
    """Registry of everything a server exposes, with plugin-style provider loading.

    Descriptors are registered once; a second registration under the same
    name (or uri) is rejected.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._resources: dict[str, ResourceDefinition] = {}
        self._prompts: dict[str, PromptDefinition] = {}
        self._providers: set[str] = set()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_tool(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: ToolHandler,
    ) -> Tool:
        """Register a tool with the registry."""
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        tool = Tool(name=name, description=description, inputSchema=input_schema)
        self._tools[name] = ToolDefinition(tool, handler)
        logger.info(f"Registered tool: {name}")
        return tool

    def register_resource(
        self,
        uri: str,
        name: str,
        reader: ResourceReader,
        description: str = "",
        mime_type: str | None = None,
    ) -> Resource:
        """Register a readable resource."""
        if uri in self._resources:
            raise ValueError(f"Resource '{uri}' is already registered")
        resource = Resource(uri=uri, name=name, description=description, mimeType=mime_type)
        self._resources[uri] = ResourceDefinition(resource, reader)
        logger.info(f"Registered resource: {uri}")
        return resource

    def register_prompt(
        self,
        name: str,
        renderer: PromptRenderer,
        description: str = "",
        arguments: list[PromptArgument] | None = None,
    ) -> Prompt:
        """Register a prompt template."""
        if name in self._prompts:
            raise ValueError(f"Prompt '{name}' is already registered")
        prompt = Prompt(name=name, description=description, arguments=tuple(arguments or ()))
        self._prompts[name] = PromptDefinition(prompt, renderer)
        logger.info(f"Registered prompt: {name}")
        return prompt

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_resource(self, uri: str) -> ResourceDefinition | None:
        return self._resources.get(uri)

    def get_prompt(self, name: str) -> PromptDefinition | None:
        return self._prompts.get(name)

    def list_tools(self) -> list[Tool]:
        """List all registered tools as MCP Tool models."""
        return [definition.tool for definition in self._tools.values()]

    def list_resources(self) -> list[Resource]:
        return [definition.resource for definition in self._resources.values()]

    def list_prompts(self) -> list[Prompt]:
        return [definition.prompt for definition in self._prompts.values()]

    # -------------------------------------------------------------------------
    # Invocation
    # -------------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Call a tool by name with the given arguments.

        A failure inside the tool is reported in the result (``isError``),
        not as a protocol error.
        """
        definition = self.get_tool(name)
        if definition is None:
            raise RpcError(TOOL_NOT_FOUND, f"Tool not found: {name}")

        try:
            content = await definition.handler(arguments)
            return ToolCallResult(content=content, isError=False)
        except Exception as e:
            logger.exception(f"Error executing tool {name}")
            return ToolCallResult(
                content=[TextContent(text=f"Tool execution error: {str(e)}")],
                isError=True,
            )

    async def read_resource(self, uri: str) -> list[ResourceContents]:
        """Read a resource by uri."""
        definition = self.get_resource(uri)
        if definition is None:
            raise RpcError(RESOURCE_NOT_FOUND, f"Resource not found: {uri}")

        text = await definition.reader(uri)
        return [ResourceContents(uri=uri, mimeType=definition.resource.mimeType, text=text)]

    async def get_prompt_messages(self, name: str, arguments: dict[str, str]) -> PromptGetResult:
        """Render a prompt, checking that its required arguments are present."""
        definition = self.get_prompt(name)
        if definition is None:
            raise RpcError(PROMPT_NOT_FOUND, f"Prompt not found: {name}")

        missing = [
            arg.name
            for arg in definition.prompt.arguments
            if arg.required and arg.name not in arguments
        ]
        if missing:
            raise RpcError(
                INVALID_PARAMS,
                f"Missing required prompt arguments: {', '.join(missing)}",
            )

        messages = await definition.renderer(arguments)
        return PromptGetResult(description=definition.prompt.description or None, messages=messages)

    # -------------------------------------------------------------------------
    # Providers
    # -------------------------------------------------------------------------

    def load_provider(self, provider_name: str) -> bool:
        """
        Load a provider module and register its capabilities.

        Providers are expected to be in mcpengine/tools/<provider_name>/
        and have a register_capabilities(registry) function.
        """
        if provider_name in self._providers:
            logger.debug(f"Provider '{provider_name}' already loaded")
            return True

        module_path = f"mcpengine.tools.{provider_name}.tools"
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.warning(f"Could not import provider '{provider_name}': {e}")
            return False

        if not hasattr(module, "register_capabilities"):
            logger.warning(f"Provider '{provider_name}' has no register_capabilities function")
            return False

        try:
            module.register_capabilities(self)
        except ValueError as e:
            logger.error(f"Error loading provider '{provider_name}': {e}")
            return False

        self._providers.add(provider_name)
        logger.info(f"Loaded provider: {provider_name}")
        return True

    def load_providers(self, provider_names: list[str]) -> dict[str, bool]:
        """Load multiple providers, returning success status for each."""
        results = {}
        for name in provider_names:
            results[name] = self.load_provider(name)
        return results

    @property
    def tool_count(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)

    @property
    def resource_count(self) -> int:
        return len(self._resources)

    @property
    def prompt_count(self) -> int:
        return len(self._prompts)

    @property
    def provider_count(self) -> int:
        """Return the number of loaded providers."""
        return len(self._providers)


# Global registry instance
_registry: CapabilityRegistry | None = None


def get_registry() -> CapabilityRegistry:
    """Get the global capability registry, creating it if necessary."""
    global _registry
    if _registry is None:
        _registry = CapabilityRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (useful for testing)."""
    global _registry
    _registry = None
