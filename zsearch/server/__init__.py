"""zsearch stdio MCP server."""

from zsearch.server.stdio_server import McpStdioServer, ToolHostError

__all__ = ["McpStdioServer", "ToolHostError"]
