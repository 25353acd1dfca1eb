"""MCP stdio server - main application entrypoint.

Speaks newline-delimited JSON-RPC on stdin/stdout. Stdout carries protocol
messages only; all logging goes to stderr.
"""

import asyncio
import contextlib
import signal

from mcpengine.config.loader import get_enabled_providers, get_settings, load_server_config
from mcpengine.mcp.registry import get_registry
from mcpengine.mcp.server import McpServer
from mcpengine.mcp.transport import StdioTransport
from mcpengine.utils.logging import get_logger, setup_logging


async def run_stdio_server() -> None:
    """Load providers and serve MCP over this process's stdio until EOF or a signal."""
    setup_logging()
    log = get_logger("startup")

    settings = get_settings()
    log.info(
        "Starting MCP server",
        server_name=settings.server_name,
        version=settings.server_version,
        protocol_version=settings.protocol_version,
    )

    config = load_server_config()
    enabled_providers = get_enabled_providers(config)
    log.info("Loading providers", providers=enabled_providers)

    registry = get_registry()
    results = registry.load_providers(enabled_providers)

    for provider, success in results.items():
        if success:
            log.info("Loaded provider", provider=provider)
        else:
            log.warning("Failed to load provider", provider=provider)

    log.info(
        "Capability registry ready",
        tool_count=registry.tool_count,
        resource_count=registry.resource_count,
        prompt_count=registry.prompt_count,
        provider_count=registry.provider_count,
    )

    server = McpServer.from_registry(registry, settings)
    transport = StdioTransport(
        max_queue_size=settings.transport_queue_max_size,
        line_limit=settings.transport_line_limit,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows)
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(server.stop()))

    try:
        await server.serve(transport)
    finally:
        log.info("Shutting down MCP server")


def main() -> None:
    """Console script entrypoint."""
    asyncio.run(run_stdio_server())


if __name__ == "__main__":
    main()
