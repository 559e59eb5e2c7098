"""
Stdio tool host - exposes Z.AI chat models as MCP tools.

The ``mcp`` server SDK owns the protocol: framing, the initialize
handshake, request validation and JSON-RPC error replies. This module
supplies the tool list and the tool handler around ``chat_completion``.
Tool failures are raised as ``ToolHostError`` and reach the client as
``isError`` results.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from mcp.server import InitializationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.types import ServerCapabilities, TextContent, Tool, ToolsCapability

from zsearch import __version__
from zsearch.providers.chat import ChatError, chat_completion
from zsearch.validation.config import DEFAULT_API_BASE_URL

logger = logging.getLogger(__name__)

SERVER_NAME = "zsearch"
MODELS = ["glm-4.7", "glm-4.5-air"]
DEFAULT_MODEL = "glm-4.5-air"
DEFAULT_MAX_TOKENS = 2000
MAX_TOKENS_LIMIT = 8000


def _tool_schema(text_field: str, text_description: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            text_field: {"type": "string", "description": text_description},
            "model": {
                "type": "string",
                "description": "Model to use (glm-4.7 or glm-4.5-air)",
                "enum": MODELS,
                "default": DEFAULT_MODEL,
            },
            "max_tokens": {
                "type": "number",
                "description": "Maximum tokens to generate",
                "default": DEFAULT_MAX_TOKENS,
                "minimum": 1,
                "maximum": MAX_TOKENS_LIMIT,
            },
        },
        "required": [text_field],
    }


TOOLS: List[Tool] = [
    Tool(
        name="generate_code",
        description=(
            "Generate code using Z.AI GLM models. "
            "Supports various programming languages and coding tasks."
        ),
        inputSchema=_tool_schema("prompt", "The coding prompt or task description"),
    ),
    Tool(
        name="chat",
        description="Chat with Z.AI GLM models for general assistance, analysis, or explanations.",
        inputSchema=_tool_schema("message", "The user message"),
    ),
]

# tool name -> argument holding the prompt text
_PROMPT_FIELDS = {"generate_code": "prompt", "chat": "message"}


class ToolHostError(Exception):
    """A tool failure, reported to the client as an ``isError`` result."""


def _max_tokens(value: Any) -> int:
    if value is None:
        return DEFAULT_MAX_TOKENS
    if isinstance(value, bool):
        raise ToolHostError("Error: 'max_tokens' must be a positive integer")
    try:
        tokens = int(value)
    except (TypeError, ValueError):
        raise ToolHostError("Error: 'max_tokens' must be a positive integer")
    if tokens < 1:
        raise ToolHostError("Error: 'max_tokens' must be a positive integer")
    return tokens


class McpStdioServer:
    """
    MCP server with ``generate_code`` and ``chat`` tools.

    Example:
        >>> host = McpStdioServer(api_key="...")
        >>> asyncio.run(host.serve_stdio())
    """

    def __init__(
        self,
        api_key: str,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_base_url = api_base_url
        self.timeout = timeout
        self._client = client

        self.server = Server(SERVER_NAME)
        self.server.list_tools()(self.list_tools)
        self.server.call_tool()(self.call_tool)

    # ── Tool handlers ─────────────────────────────────────────────────────

    async def list_tools(self) -> List[Tool]:
        return TOOLS

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """
        Run one chat tool.

        Raises:
            ToolHostError: For unknown tools, bad arguments, API failures
                and empty replies.
        """
        field = _PROMPT_FIELDS.get(name)
        if field is None:
            raise ToolHostError(f"Unknown tool: {name}")

        arguments = arguments or {}
        text = arguments.get(field)
        if not isinstance(text, str) or not text:
            raise ToolHostError(f"Error: '{field}' is required")

        max_tokens = _max_tokens(arguments.get("max_tokens"))
        model = arguments.get("model") or DEFAULT_MODEL

        try:
            reply = await chat_completion(
                [{"role": "user", "content": text}],
                api_base_url=self.api_base_url,
                api_key=self.api_key,
                model=str(model),
                max_tokens=max_tokens,
                timeout=self.timeout,
                client=self._client,
            )
        except ChatError as e:
            raise ToolHostError(f"Error: {e.message}") from e

        if not reply.content:
            raise ToolHostError("Error: No content in Z.AI API response")
        return [TextContent(type="text", text=reply.content)]

    # ── Serving ───────────────────────────────────────────────────────────

    def initialization_options(self) -> InitializationOptions:
        return InitializationOptions(
            server_name=SERVER_NAME,
            server_version=__version__,
            capabilities=ServerCapabilities(tools=ToolsCapability()),
        )

    async def serve_stdio(self) -> None:
        """Serve on this process's stdin/stdout until the client disconnects."""
        logger.info("zsearch MCP server listening on stdio")
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(read_stream, write_stream, self.initialization_options())
