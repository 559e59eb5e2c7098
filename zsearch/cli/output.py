"""
zsearch Output - data-only default output, JSON wrapper, plain text.

Modes:
- default: data only (arrays as JSON lines, objects as compact JSON,
  primitives as-is)
- ``--json``: wrapped in ``{schema, meta, status, data, errors}``
- ``--plain``: stable line-based text
Errors and hints always go to stderr, except in ``--json`` mode where they
are part of the wrapper.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape

from zsearch import __version__
from zsearch.bridge.capabilities import UnknownToolError
from zsearch.bridge.errors import BridgeError, ToolCallError
from zsearch.providers.chat import ChatError
from zsearch.validation.config import ConfigError


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERIC_FAILURE = 1
    INVALID_USAGE = 2
    NETWORK_FAILURE = 5
    AUTH_FAILURE = 6
    USER_ABORT = 130


class ErrorCode(str, Enum):
    USAGE = "E_USAGE"
    VALIDATION = "E_VALIDATION"
    AUTH = "E_AUTH"
    NETWORK = "E_NETWORK"
    INTERNAL = "E_INTERNAL"


@dataclass
class OutputOptions:
    json: bool = False
    plain: bool = False
    quiet: bool = False
    verbose: bool = False
    debug: bool = False
    no_color: bool = False

    @property
    def use_color(self) -> bool:
        return not (self.no_color or "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb")


def make_error(
    code: ErrorCode,
    message: str,
    hint: Optional[str] = None,
    details: Any = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": ErrorCode(code).value, "message": message}
    if hint:
        error["hint"] = hint
    if details is not None:
        error["details"] = details
    return error


def schema_for(command: str) -> str:
    if command == "tool":
        command = "tools"
    return f"zsearch.{command}.v1"


def wrap_json(data: Any, command: str, errors: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Wrap data in the standard JSON output envelope."""
    errors = errors or []
    return {
        "schema": schema_for(command),
        "meta": {
            "tool": "zsearch",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "command": command,
        },
        "status": "error" if errors else "success",
        "data": data,
        "errors": errors,
    }


def format_plain(data: Any) -> str:
    """Stable line-based text."""
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    if isinstance(data, list):
        return "\n".join(json.dumps(item, ensure_ascii=False) for item in data)
    if isinstance(data, dict):
        return json.dumps(data, indent=2, ensure_ascii=False)
    return str(data)


def error_console(options: OutputOptions) -> Console:
    return Console(stderr=True, no_color=not options.use_color, soft_wrap=True, highlight=False)


def emit(
    data: Any,
    command: str,
    options: OutputOptions,
    errors: Optional[List[Dict[str, Any]]] = None,
) -> None:
    """Write a command's result (or errors) in the selected mode."""
    if options.json:
        click.echo(json.dumps(wrap_json(data, command, errors), indent=2, ensure_ascii=False))
        return

    if errors:
        console = error_console(options)
        for error in errors:
            console.print(f"[red]Error:[/red] {escape(error['message'])}")
            if error.get("hint"):
                console.print(f"[dim]Hint: {escape(error['hint'])}[/dim]")
        return

    if options.plain:
        text = format_plain(data)
        if text:
            click.echo(text)
        return

    if data is None:
        return
    if isinstance(data, list):
        for item in data:
            click.echo(json.dumps(item, ensure_ascii=False))
    elif isinstance(data, dict):
        click.echo(json.dumps(data, separators=(",", ":"), ensure_ascii=False))
    else:
        click.echo(str(data))


def classify_error(exc: BaseException) -> Tuple[ExitCode, ErrorCode, Optional[str]]:
    """Map an exception onto ``(exit code, error code, hint)``."""
    if isinstance(exc, KeyboardInterrupt):
        return ExitCode.USER_ABORT, ErrorCode.INTERNAL, None
    if isinstance(exc, UnknownToolError):
        return ExitCode.INVALID_USAGE, ErrorCode.VALIDATION, "Run 'zsearch tools' to list tool names"
    if isinstance(exc, (BridgeError, ChatError)):
        if exc.status_code in (401, 403):
            return ExitCode.AUTH_FAILURE, ErrorCode.AUTH, "Check your Z_AI_API_KEY"
        hint = None
        if isinstance(exc, ToolCallError) and exc.timed_out:
            hint = "Increase the limit with --timeout or Z_AI_TIMEOUT (milliseconds)"
        return ExitCode.NETWORK_FAILURE, ErrorCode.NETWORK, hint
    if isinstance(exc, ValueError):
        return ExitCode.INVALID_USAGE, ErrorCode.VALIDATION, None
    if isinstance(exc, ConfigError):
        return ExitCode.GENERIC_FAILURE, ErrorCode.USAGE, None
    return ExitCode.GENERIC_FAILURE, ErrorCode.INTERNAL, None


def exit_code_for(exc: BaseException) -> ExitCode:
    return classify_error(exc)[0]
