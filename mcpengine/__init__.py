"""mcpengine: an MCP server and client over newline-delimited stdio."""

__version__ = "0.1.0"
