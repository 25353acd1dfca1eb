"""Example provider - demonstrates the capability implementation pattern."""

import json
from typing import Any

from mcpengine.config.loader import get_settings
from mcpengine.mcp.models import PromptArgument, PromptMessage, TextContent
from mcpengine.mcp.registry import CapabilityRegistry
from mcpengine.tools.base import prompt, register_decorated, resource, tool


@tool(
    name="example-ping",
    description="Returns a simple pong response. Use this to test if the MCP server is working.",
    input_schema={
        "type": "object",
        "properties": {},
        "required": [],
    },
)
async def ping_handler(arguments: dict[str, Any]) -> list[TextContent]:
    """Handle the example-ping tool call."""
    return [TextContent(text="pong: True")]


@tool(
    name="example-echo",
    description="Echoes back the provided message. Use this to test tool argument passing.",
    input_schema={
        "type": "object",
        "properties": {
            "message": {
                "type": "string",
                "description": "The message to echo back",
            },
        },
        "required": ["message"],
    },
)
async def echo_handler(arguments: dict[str, Any]) -> list[TextContent]:
    """Handle the example-echo tool call."""
    message = arguments.get("message", "")
    if not message:
        return [TextContent(text="Error: 'message' argument is required")]
    return [TextContent(text=f"Echo: {message}")]


@resource(
    uri="example://server-info",
    name="Server Info",
    description="Name and version of this server",
    mime_type="application/json",
)
async def server_info_reader(uri: str) -> str:
    settings = get_settings()
    return json.dumps({"name": settings.server_name, "version": settings.server_version})


@prompt(
    name="example-summarize",
    description="Summarize a piece of text",
    arguments=[PromptArgument(name="text", description="Text to summarize", required=True)],
)
async def summarize_prompt(arguments: dict[str, str]) -> list[PromptMessage]:
    return [
        PromptMessage(
            role="user",
            content=TextContent(text=f"Please summarize the following text:\n\n{arguments['text']}"),
        )
    ]


def register_capabilities(registry: CapabilityRegistry) -> None:
    """Register all example provider capabilities with the registry."""
    register_decorated(
        registry,
        ping_handler,
        echo_handler,
        server_info_reader,
        summarize_prompt,
    )
