"""
Capabilities - the named remote tools and how to reach them.

HTTP tools (search, reader, zread) go through a ``ToolInvoker``; vision
tools go through the vendor's stdio MCP server. ``route_call`` maps a
qualified tool name such as ``zai.search.webSearchPrime`` onto one of
them.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from zsearch.bridge.errors import BridgeError, ToolCallError
from zsearch.bridge.invoker import ToolInvoker
from zsearch.bridge.normalize import normalize
from zsearch.bridge.retry import with_retry
from zsearch.bridge.schema import EndpointClass, ToolDef
from zsearch.bridge.stdio import StdioTransport, StdioTransportError, vision_transport
from zsearch.validation.config import ZSearchConfig

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "zai.search.webSearchPrime"
WEB_READER_TOOL = "zai.read.webReader"
ZREAD_PREFIX = "zai.zread."
VISION_PREFIX = "zai.vision."

ZREAD_METHODS = ("search_doc", "get_repo_structure", "read_file")

IMAGE_ANALYSIS = VISION_PREFIX + "image_analysis"
EXTRACT_TEXT = VISION_PREFIX + "extract_text_from_screenshot"
UI_DIFF_CHECK = VISION_PREFIX + "ui_diff_check"
VIDEO_ANALYSIS = VISION_PREFIX + "video_analysis"

TransportFactory = Callable[[str, str], StdioTransport]


class UnknownToolError(BridgeError):
    """Raised when a qualified tool name maps to no capability."""


_OWNER_REPO = {
    "owner": {"type": "string", "description": "Repository owner"},
    "repo": {"type": "string", "description": "Repository name"},
}

HTTP_TOOLS: List[ToolDef] = [
    ToolDef(
        name=WEB_SEARCH_TOOL,
        description="Real-time web search",
        input_schema={
            "type": "object",
            "properties": {
                "search_query": {"type": "string"},
                "count": {"type": "number", "default": 10},
                "language": {"type": "string"},
                "search_recency_filter": {
                    "type": "string",
                    "enum": ["oneDay", "oneWeek", "oneMonth", "oneYear", "noLimit"],
                },
            },
            "required": ["search_query"],
        },
    ),
    ToolDef(
        name=WEB_READER_TOOL,
        description="Fetch web page as markdown",
        input_schema={
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "retain_images": {"type": "boolean"},
                "with_images_summary": {"type": "boolean"},
                "no_gfm": {"type": "boolean"},
            },
            "required": ["url"],
        },
    ),
    ToolDef(
        name=ZREAD_PREFIX + "search_doc",
        description="Search GitHub repository documentation",
        input_schema={
            "type": "object",
            "properties": {**_OWNER_REPO, "query": {"type": "string"}, "language": {"type": "string"}},
            "required": ["owner", "repo", "query"],
        },
    ),
    ToolDef(
        name=ZREAD_PREFIX + "get_repo_structure",
        description="Get GitHub repository file structure",
        input_schema={
            "type": "object",
            "properties": {
                **_OWNER_REPO,
                "path": {"type": "string"},
                "depth": {"type": "number"},
            },
            "required": ["owner", "repo"],
        },
    ),
    ToolDef(
        name=ZREAD_PREFIX + "read_file",
        description="Read a file from a GitHub repository",
        input_schema={
            "type": "object",
            "properties": {**_OWNER_REPO, "path": {"type": "string"}},
            "required": ["owner", "repo", "path"],
        },
    ),
]


def find_http_tool(name: str) -> Optional[ToolDef]:
    for tool in HTTP_TOOLS:
        if tool.name == name:
            return tool
    return None


def filter_tools(tools: List[ToolDef], needle: Optional[str]) -> List[ToolDef]:
    """Case-insensitive substring match on name and description."""
    if not needle:
        return list(tools)
    needle = needle.lower()
    return [
        tool for tool in tools
        if needle in f"{tool.name} {tool.description or ''}".lower()
    ]


def parse_owner_repo(value: str) -> Tuple[str, str]:
    """
    Split ``owner/repo``.

    Raises:
        ValueError: If the value is not exactly two non-empty parts.
    """
    parts = value.split("/")
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise ValueError("Invalid repository format. Use owner/repo")
    return parts[0].strip(), parts[1].strip()


# ── HTTP capabilities ────────────────────────────────────────────────────


async def web_search(
    invoker: ToolInvoker,
    credential: str,
    query: str,
    count: int = 10,
    time_range: Optional[str] = None,
    language: Optional[str] = None,
) -> Any:
    arguments: Dict[str, Any] = {"search_query": query, "count": count}
    if language:
        arguments["language"] = language
    if time_range:
        arguments["search_recency_filter"] = time_range
    return await invoker.call(EndpointClass.WEB_SEARCH, credential, "webSearchPrime", arguments)


async def web_reader(
    invoker: ToolInvoker,
    credential: str,
    url: str,
    retain_images: Optional[bool] = None,
    with_images_summary: bool = False,
    no_gfm: bool = False,
) -> Any:
    arguments: Dict[str, Any] = {"url": url}
    if retain_images is not None:
        arguments["retain_images"] = retain_images
    if with_images_summary:
        arguments["with_images_summary"] = True
    if no_gfm:
        arguments["no_gfm"] = True
    return await invoker.call(EndpointClass.WEB_READER, credential, "webReader", arguments)


async def zread(
    invoker: ToolInvoker,
    credential: str,
    method: str,
    arguments: Dict[str, Any],
) -> Any:
    if method not in ZREAD_METHODS:
        raise UnknownToolError(f"Unknown tool: {ZREAD_PREFIX}{method}")
    return await invoker.call(EndpointClass.REPO_READER, credential, method, arguments)


# ── Vision (stdio) ───────────────────────────────────────────────────────


def _vision_name(qualified_name: str) -> str:
    if qualified_name.startswith(VISION_PREFIX):
        return qualified_name[len(VISION_PREFIX):]
    return qualified_name


async def vision_call(
    config: ZSearchConfig,
    tool_name: str,
    arguments: Dict[str, Any],
    transport_factory: TransportFactory = vision_transport,
) -> Any:
    """
    Run one vision tool on a fresh stdio server.

    Spawning the server is the flaky part, so the whole round trip is
    retried ``config.retry.vision`` times on transport errors.
    """
    async def attempt() -> Dict[str, Any]:
        async with transport_factory(config.api_key or "", config.mode) as transport:
            return await transport.call_tool(_vision_name(tool_name), arguments)

    try:
        result = await with_retry(attempt, config.retry.vision, retry_on=(StdioTransportError,))
    except StdioTransportError as exc:
        raise ToolCallError(f"Vision server error: {exc}", cause=exc) from exc

    if result.get("isError"):
        content = result.get("content")
        text = normalize(content) if content else None
        raise ToolCallError(text if isinstance(text, str) and text else "Vision tool call failed")
    content = result.get("content")
    if content is None:
        return result
    return normalize(content)


async def list_vision_tools(
    config: ZSearchConfig,
    transport_factory: TransportFactory = vision_transport,
) -> List[ToolDef]:
    """Vision tools as advertised by the stdio server, with qualified names."""
    async with transport_factory(config.api_key or "", config.mode) as transport:
        raw_tools = await transport.list_tools()

    tools = []
    for raw in raw_tools:
        tool = ToolDef.model_validate(raw)
        if not tool.name.startswith(VISION_PREFIX):
            tool.name = VISION_PREFIX + tool.name
        tools.append(tool)
    return tools


# ── Routing ──────────────────────────────────────────────────────────────


def _is_auth_failure(exc: BaseException) -> bool:
    return isinstance(exc, BridgeError) and exc.is_auth_failure


async def route_call(
    invoker: ToolInvoker,
    config: ZSearchConfig,
    qualified_name: str,
    arguments: Optional[Dict[str, Any]] = None,
    transport_factory: TransportFactory = vision_transport,
) -> Any:
    """
    Call a tool by qualified name.

    HTTP tools are retried ``config.retry.global_count`` times; auth
    failures are never retried.

    Raises:
        UnknownToolError: If no capability serves ``qualified_name``.
        ToolCallError: If the call fails.
    """
    arguments = dict(arguments or {})
    credential = config.api_key or ""

    if qualified_name.startswith(VISION_PREFIX):
        return await vision_call(config, qualified_name, arguments, transport_factory)

    if qualified_name == WEB_SEARCH_TOOL:
        endpoint_class, remote_name = EndpointClass.WEB_SEARCH, "webSearchPrime"
    elif qualified_name == WEB_READER_TOOL:
        endpoint_class, remote_name = EndpointClass.WEB_READER, "webReader"
    elif qualified_name.startswith(ZREAD_PREFIX) and qualified_name[len(ZREAD_PREFIX):] in ZREAD_METHODS:
        endpoint_class, remote_name = EndpointClass.REPO_READER, qualified_name[len(ZREAD_PREFIX):]
    else:
        raise UnknownToolError(f"Unknown tool: {qualified_name}")

    logger.debug("Routing %s to %s", qualified_name, endpoint_class.value)
    return await with_retry(
        lambda: invoker.call(endpoint_class, credential, remote_name, arguments),
        config.retry.global_count,
        retry_on=(ToolCallError,),
        give_up=_is_auth_failure,
    )
