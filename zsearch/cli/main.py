"""
zsearch CLI - Z.AI web search, reader, repo and vision tools.

Every command reads configuration, does one round of work and exits.
Results go to stdout; diagnostics, errors and hints go to stderr.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NoReturn, Optional

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler

from zsearch import __version__
from zsearch.bridge.acquirer import SessionAcquirer
from zsearch.bridge.capabilities import (
    EXTRACT_TEXT,
    HTTP_TOOLS,
    IMAGE_ANALYSIS,
    UI_DIFF_CHECK,
    VIDEO_ANALYSIS,
    VISION_PREFIX,
    TransportFactory,
    filter_tools,
    find_http_tool,
    list_vision_tools,
    parse_owner_repo,
    route_call,
    vision_call,
    web_reader,
    web_search,
    zread,
)
from zsearch.bridge.factory import InvokerFactory
from zsearch.bridge.invoker import ToolInvoker
from zsearch.bridge.session_store import FileSessionBackend, SessionStore
from zsearch.bridge.stdio import StdioTransportError, vision_transport
from zsearch.cli.output import (
    ErrorCode,
    ExitCode,
    OutputOptions,
    classify_error,
    emit,
    error_console,
    make_error,
)
from zsearch.core.cache import ToolCache, tool_discovery_key
from zsearch.core.doctor import run_checks
from zsearch.providers.chat import DEFAULT_MODEL, chat_completion
from zsearch.server.stdio_server import McpStdioServer
from zsearch.validation.config import Config, ConfigError, ZSearchConfig

logger = logging.getLogger("zsearch")

TIME_RANGES = ["oneDay", "oneWeek", "oneMonth", "oneYear", "noLimit"]
API_KEY_HINT = 'Set it with: export Z_AI_API_KEY="your-api-key"'


@dataclass
class AppState:
    """Per-invocation state shared by all commands via ``ctx.obj``."""

    options: OutputOptions = field(default_factory=OutputOptions)
    timeout_ms: Optional[int] = None
    environ: Optional[Mapping[str, str]] = None
    client: Optional[httpx.AsyncClient] = None
    transport_factory: TransportFactory = vision_transport
    _config: Optional[Config] = None

    def config(self) -> Config:
        if self._config is None:
            config = Config.load(self.environ)
            if self.timeout_ms:
                config.override(timeout=self.timeout_ms / 1000)
            self._config = config
        return self._config


def setup_logging(verbose: bool, debug: bool, quiet: bool, no_color: bool) -> None:
    """Route the ``zsearch`` logger to stderr through rich."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_time=False,
        show_path=debug,
        rich_tracebacks=debug,
    )
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


# ── Command plumbing ──────────────────────────────────────────────────────


def _fail(
    state: AppState,
    command: str,
    exit_code: ExitCode,
    error_code: ErrorCode,
    message: str,
    hint: Optional[str] = None,
) -> NoReturn:
    emit(None, command, state.options, [make_error(error_code, message, hint)])
    sys.exit(int(exit_code))


def _load(state: AppState, command: str, require_key: bool = True) -> ZSearchConfig:
    try:
        merged = state.config().merged
    except ConfigError as e:
        _fail(state, command, ExitCode.GENERIC_FAILURE, ErrorCode.USAGE, str(e))
    if require_key and not merged.api_key:
        _fail(
            state, command, ExitCode.AUTH_FAILURE, ErrorCode.AUTH,
            "Z_AI_API_KEY is required", API_KEY_HINT,
        )
    return merged


def _run(state: AppState, command: str, action: Callable[[], Awaitable[Any]]) -> Any:
    try:
        return asyncio.run(action())
    except KeyboardInterrupt:
        _fail(state, command, ExitCode.USER_ABORT, ErrorCode.INTERNAL, "Aborted")
    except Exception as e:
        logger.debug("%s failed", command, exc_info=True)
        exit_code, error_code, hint = classify_error(e)
        _fail(state, command, exit_code, error_code, str(e) or type(e).__name__, hint)


def _invoke(
    state: AppState,
    command: str,
    fn: Callable[[ToolInvoker, ZSearchConfig], Awaitable[Any]],
) -> None:
    """Run one bridge call with the configured invoker and emit its result."""
    config = _load(state, command)

    async def action() -> Any:
        invoker = InvokerFactory.create(config, client=state.client)
        return await fn(invoker, config)

    emit(_run(state, command, action), command, state.options)


def _owner_repo(state: AppState, value: str):
    try:
        return parse_owner_repo(value)
    except ValueError as e:
        _fail(state, "repo", ExitCode.INVALID_USAGE, ErrorCode.VALIDATION, str(e))


def _warn(state: AppState, message: str) -> None:
    if not state.options.quiet:
        error_console(state.options).print(f"[yellow]Warning:[/yellow] {message}")


# ── Root group ────────────────────────────────────────────────────────────


@click.group()
@click.version_option(__version__, prog_name="zsearch")
@click.option("--json", "json_output", is_flag=True, help="Wrap output in the JSON envelope")
@click.option("--plain", is_flag=True, help="Stable line-based text output")
@click.option("-q", "--quiet", is_flag=True, help="Suppress warnings")
@click.option("-v", "--verbose", is_flag=True, help="Show progress diagnostics")
@click.option("--debug", is_flag=True, help="Show debug logging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--timeout", type=click.IntRange(min=1), help="Request timeout in milliseconds")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    plain: bool,
    quiet: bool,
    verbose: bool,
    debug: bool,
    no_color: bool,
    timeout: Optional[int],
) -> None:
    """
    zsearch - Z.AI web search, reader, repository and vision tools.

    \b
    Examples:
        zsearch search "python asyncio tutorial" -c 5
        zsearch read https://example.com/docs
        zsearch repo tree pallets/click --depth 2
        zsearch vision analyze screenshot.png "What does this show?"
    """
    state = ctx.ensure_object(AppState)
    state.options = OutputOptions(
        json=json_output,
        plain=plain,
        quiet=quiet,
        verbose=verbose,
        debug=debug,
        no_color=no_color,
    )
    state.timeout_ms = timeout
    setup_logging(verbose, debug, quiet, no_color)


# ── Search / read ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("query")
@click.option("-c", "--count", type=click.IntRange(1, 50), default=10, show_default=True,
              help="Number of results")
@click.option("--time-range", type=click.Choice(TIME_RANGES), help="Recency filter")
@click.option("--language", help="Language filter (e.g. en, zh)")
@click.pass_obj
def search(
    state: AppState,
    query: str,
    count: int,
    time_range: Optional[str],
    language: Optional[str],
) -> None:
    """Search the web."""
    _invoke(
        state, "search",
        lambda invoker, config: web_search(
            invoker, config.api_key, query, count, time_range, language=language,
        ),
    )


@cli.command()
@click.argument("url")
@click.option("--with-images-summary", is_flag=True, help="Include image summaries")
@click.option("--no-gfm", is_flag=True, help="Disable GitHub Flavored Markdown")
@click.option("--retain-images/--no-retain-images", default=None, help="Keep images in the output")
@click.pass_obj
def read(
    state: AppState,
    url: str,
    with_images_summary: bool,
    no_gfm: bool,
    retain_images: Optional[bool],
) -> None:
    """Fetch a web page as markdown."""
    _invoke(
        state, "read",
        lambda invoker, config: web_reader(
            invoker, config.api_key, url,
            retain_images=retain_images,
            with_images_summary=with_images_summary,
            no_gfm=no_gfm,
        ),
    )


# ── Repository ────────────────────────────────────────────────────────────


@cli.group()
def repo() -> None:
    """Explore GitHub repositories."""


@repo.command("tree")
@click.argument("owner_repo", metavar="OWNER/REPO")
@click.option("--path", "sub_path", help="Subdirectory path")
@click.option("--depth", type=click.IntRange(min=1), default=3, show_default=True, help="Maximum depth")
@click.pass_obj
def repo_tree(state: AppState, owner_repo: str, sub_path: Optional[str], depth: int) -> None:
    """Show a repository's file structure."""
    owner, name = _owner_repo(state, owner_repo)
    arguments: Dict[str, Any] = {"owner": owner, "repo": name, "depth": depth}
    if sub_path:
        arguments["path"] = sub_path
    _invoke(
        state, "repo",
        lambda invoker, config: zread(invoker, config.api_key, "get_repo_structure", arguments),
    )


@repo.command("search")
@click.argument("owner_repo", metavar="OWNER/REPO")
@click.argument("query")
@click.option("--language", help="Language filter")
@click.pass_obj
def repo_search(state: AppState, owner_repo: str, query: str, language: Optional[str]) -> None:
    """Search a repository's documentation."""
    owner, name = _owner_repo(state, owner_repo)
    arguments: Dict[str, Any] = {"owner": owner, "repo": name, "query": query}
    if language:
        arguments["language"] = language
    _invoke(
        state, "repo",
        lambda invoker, config: zread(invoker, config.api_key, "search_doc", arguments),
    )


@repo.command("read")
@click.argument("owner_repo", metavar="OWNER/REPO")
@click.argument("path")
@click.pass_obj
def repo_read(state: AppState, owner_repo: str, path: str) -> None:
    """Read one file from a repository."""
    owner, name = _owner_repo(state, owner_repo)
    arguments = {"owner": owner, "repo": name, "path": path}
    _invoke(
        state, "repo",
        lambda invoker, config: zread(invoker, config.api_key, "read_file", arguments),
    )


# ── Tool discovery ────────────────────────────────────────────────────────


@cli.command()
@click.option("--filter", "filter_text", help="Only tools whose name or description contains TEXT")
@click.option("--full", is_flag=True, help="Include input schemas")
@click.option("--no-vision", is_flag=True, help="Skip the vision MCP server")
@click.pass_obj
def tools(state: AppState, filter_text: Optional[str], full: bool, no_vision: bool) -> None:
    """List available tools."""
    config = _load(state, "tools")
    cache = ToolCache(config.cache.dir, ttl_ms=config.cache.ttl_ms, enabled=config.cache.enabled)
    key = tool_discovery_key(filter_text, include_vision=not no_vision)

    listing = cache.get(key)
    if listing is None:
        discovered = []
        complete = True
        if not no_vision:
            try:
                discovered = asyncio.run(list_vision_tools(config, state.transport_factory))
            except StdioTransportError as e:
                # Degraded listings are shown but never cached.
                complete = False
                _warn(state, f"Vision server unavailable: {e}")
        listing = [tool.full() for tool in filter_tools(discovered + list(HTTP_TOOLS), filter_text)]
        if complete:
            cache.set(key, listing)

    if not full:
        listing = [{"name": tool["name"], "description": tool.get("description")} for tool in listing]
    emit(listing, "tools", state.options)


@cli.command()
@click.argument("name")
@click.option("--no-vision", is_flag=True, help="Skip the vision MCP server")
@click.pass_obj
def tool(state: AppState, name: str, no_vision: bool) -> None:
    """Show details for one tool."""
    config = _load(state, "tool")

    details = None
    if name.startswith(VISION_PREFIX) and not no_vision:
        try:
            vision = asyncio.run(list_vision_tools(config, state.transport_factory))
        except StdioTransportError as e:
            _warn(state, f"Vision server unavailable: {e}")
        else:
            details = next((t for t in vision if t.name == name), None)
    if details is None:
        details = find_http_tool(name)

    if details is None:
        _fail(state, "tool", ExitCode.INVALID_USAGE, ErrorCode.VALIDATION, f"Tool not found: {name}")
    emit(details.full(), "tool", state.options)


def _read_arguments(
    state: AppState,
    json_args: Optional[str],
    file: Optional[str],
    use_stdin: bool,
) -> Dict[str, Any]:
    sources = [s for s in (json_args is not None, file is not None, use_stdin) if s]
    if len(sources) > 1:
        _fail(
            state, "call", ExitCode.INVALID_USAGE, ErrorCode.USAGE,
            "Use only one of --json-args, --file or --stdin",
        )

    if json_args is not None:
        raw, origin = json_args, "--json-args"
    elif file is not None:
        try:
            with open(file, encoding="utf-8") as f:
                raw = f.read()
        except OSError:
            _fail(
                state, "call", ExitCode.INVALID_USAGE, ErrorCode.VALIDATION,
                f"Failed to read or parse file: {file}",
            )
        origin = file
    elif use_stdin:
        raw, origin = click.get_text_stream("stdin").read(), "stdin"
    else:
        return {}

    try:
        arguments = json.loads(raw) if raw.strip() else None
    except ValueError:
        _fail(state, "call", ExitCode.INVALID_USAGE, ErrorCode.VALIDATION, f"Invalid JSON in {origin}")
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        _fail(
            state, "call", ExitCode.INVALID_USAGE, ErrorCode.VALIDATION,
            "Tool arguments must be a JSON object",
        )
    return arguments


@cli.command()
@click.argument("tool_name", metavar="TOOL")
@click.option("--json-args", help="Tool arguments as a JSON string")
@click.option("--file", type=click.Path(dir_okay=False), help="Tool arguments from a JSON file")
@click.option("--stdin", "use_stdin", is_flag=True, help="Read tool arguments from stdin")
@click.option("--dry-run", is_flag=True, help="Show what would be called without executing")
@click.pass_obj
def call(
    state: AppState,
    tool_name: str,
    json_args: Optional[str],
    file: Optional[str],
    use_stdin: bool,
    dry_run: bool,
) -> None:
    """Invoke a tool directly. Output is always the JSON envelope."""
    state.options.json = True
    arguments = _read_arguments(state, json_args, file, use_stdin)

    if dry_run:
        emit({"tool": tool_name, "arguments": arguments, "dryRun": True}, "call", state.options)
        return

    _invoke(
        state, "call",
        lambda invoker, config: route_call(
            invoker, config, tool_name, arguments, state.transport_factory
        ),
    )


# ── Vision ────────────────────────────────────────────────────────────────


def _vision(state: AppState, tool_name: str, arguments: Dict[str, Any]) -> None:
    config = _load(state, "vision")
    result = _run(
        state, "vision",
        lambda: vision_call(config, tool_name, arguments, state.transport_factory),
    )
    emit(result, "vision", state.options)


@cli.group()
def vision() -> None:
    """Analyze images and videos (runs the vision MCP server via npx)."""


@vision.command("analyze")
@click.argument("image")
@click.argument("prompt")
@click.pass_obj
def vision_analyze(state: AppState, image: str, prompt: str) -> None:
    """Analyze an image with a prompt."""
    _vision(state, IMAGE_ANALYSIS, {"image_path": image, "prompt": prompt})


@vision.command("ocr")
@click.argument("image")
@click.pass_obj
def vision_ocr(state: AppState, image: str) -> None:
    """Extract text from a screenshot."""
    _vision(state, EXTRACT_TEXT, {"image_path": image})


@vision.command("ui-diff")
@click.argument("before")
@click.argument("after")
@click.pass_obj
def vision_ui_diff(state: AppState, before: str, after: str) -> None:
    """Compare two UI screenshots."""
    _vision(state, UI_DIFF_CHECK, {"image_path_before": before, "image_path_after": after})


@vision.command("video")
@click.argument("video")
@click.argument("prompt")
@click.pass_obj
def vision_video(state: AppState, video: str, prompt: str) -> None:
    """Analyze a video with a prompt."""
    _vision(state, VIDEO_ANALYSIS, {"video_path": video, "prompt": prompt})


# ── Model ─────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("prompt")
@click.option("--model", "model_name", default=DEFAULT_MODEL, show_default=True, help="Model name")
@click.option("--system", help="Optional system prompt")
@click.option("--temperature", type=float, help="Sampling temperature")
@click.option("--max-tokens", type=click.IntRange(min=1), help="Max tokens for the response")
@click.pass_obj
def model(
    state: AppState,
    prompt: str,
    model_name: str,
    system: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> None:
    """Send a prompt to a Z.AI chat model."""
    config = _load(state, "model")

    messages: List[Dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    result = _run(
        state, "model",
        lambda: chat_completion(
            messages,
            api_base_url=config.api_base_url,
            api_key=config.api_key,
            model=model_name,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=config.timeout,
            client=state.client,
        ),
    )

    data: Dict[str, Any] = {"content": result.content}
    if state.options.json:
        data["raw"] = result.raw
    emit(data, "model", state.options)


# ── Maintenance ───────────────────────────────────────────────────────────


@cli.command()
@click.option("--no-vision", is_flag=True, help="Skip the vision MCP server check")
@click.pass_obj
def doctor(state: AppState, no_vision: bool) -> None:
    """Run environment and connectivity checks."""
    _load(state, "doctor", require_key=False)
    result = _run(
        state, "doctor",
        lambda: run_checks(
            state.config(),
            include_vision=not no_vision,
            client=state.client,
            transport_factory=state.transport_factory,
        ),
    )
    emit(result.to_dict(), "doctor", state.options)
    sys.exit(int(ExitCode.SUCCESS if result.healthy else ExitCode.GENERIC_FAILURE))


@cli.group()
def sessions() -> None:
    """Manage cached MCP sessions."""


@sessions.command("clear")
@click.option("--expired", is_flag=True, help="Only remove expired sessions")
@click.pass_obj
def sessions_clear(state: AppState, expired: bool) -> None:
    """Remove cached session ids."""
    config = _load(state, "sessions", require_key=False)
    store = SessionStore(
        SessionAcquirer(client=state.client),
        backend=FileSessionBackend(config.session_file),
        ttl_ms=config.sessions.ttl_ms,
    )
    if expired:
        _run(state, "sessions", store.clear_expired_sessions)
    else:
        _run(state, "sessions", store.clear_sessions)
    emit(
        {"cleared": "expired" if expired else "all", "file": str(config.session_file)},
        "sessions",
        state.options,
    )


@cli.command("mcp-server")
@click.option("--api-key", help="Z.AI API key (overrides Z_AI_API_KEY)")
@click.pass_obj
def mcp_server(state: AppState, api_key: Optional[str]) -> None:
    """Run as a headless MCP server on stdio."""
    config = _load(state, "mcp-server", require_key=False)
    key = api_key or config.api_key
    if not key:
        _fail(
            state, "mcp-server", ExitCode.GENERIC_FAILURE, ErrorCode.AUTH,
            "Z_AI_API_KEY is required", API_KEY_HINT,
        )

    server = McpStdioServer(
        api_key=key,
        api_base_url=config.api_base_url,
        timeout=config.timeout,
        client=state.client,
    )
    _run(state, "mcp-server", server.serve_stdio)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
