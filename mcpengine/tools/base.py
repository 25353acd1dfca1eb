"""Decorators for declaring capabilities next to their handlers."""

from typing import Any, Callable, TypeVar

from mcpengine.mcp.models import PromptArgument
from mcpengine.mcp.registry import CapabilityRegistry

F = TypeVar("F", bound=Callable[..., Any])

_METADATA_ATTR = "_capability_metadata"


def _attach(kind: str, metadata: dict[str, Any]) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        setattr(func, _METADATA_ATTR, (kind, metadata))
        return func

    return decorator


def tool(
    name: str,
    description: str,
    input_schema: dict[str, Any],
) -> Callable[[F], F]:
    """
    Decorator to mark a function as an MCP tool.

    Usage:
        @tool(
            name="example-ping",
            description="Returns pong",
            input_schema={"type": "object", "properties": {}}
        )
        async def ping(arguments: dict) -> list[TextContent]:
            return [TextContent(text="pong")]

    The decorated function is returned unchanged with metadata attached;
    pass it to :func:`register_decorated` to add it to a registry.
    """
    return _attach(
        "tool",
        {"name": name, "description": description, "input_schema": input_schema},
    )


def resource(
    uri: str,
    name: str,
    description: str = "",
    mime_type: str | None = None,
) -> Callable[[F], F]:
    """Decorator to mark ``async def read(uri) -> str`` as an MCP resource."""
    return _attach(
        "resource",
        {"uri": uri, "name": name, "description": description, "mime_type": mime_type},
    )


def prompt(
    name: str,
    description: str = "",
    arguments: list[PromptArgument] | None = None,
) -> Callable[[F], F]:
    """Decorator to mark ``async def render(arguments) -> list[PromptMessage]`` as a prompt."""
    return _attach(
        "prompt",
        {"name": name, "description": description, "arguments": arguments or []},
    )


def get_capability_metadata(func: Callable) -> tuple[str, dict[str, Any]] | None:
    """Get (kind, metadata) from a decorated function."""
    return getattr(func, _METADATA_ATTR, None)


def register_decorated(registry: CapabilityRegistry, *funcs: Callable) -> None:
    """Register every decorated function with the registry."""
    for func in funcs:
        found = get_capability_metadata(func)
        if found is None:
            raise ValueError(f"{func.__name__} is not decorated as a capability")
        kind, meta = found
        if kind == "tool":
            registry.register_tool(handler=func, **meta)
        elif kind == "resource":
            registry.register_resource(reader=func, **meta)
        else:
            registry.register_prompt(renderer=func, **meta)
