"""MCP server communication via stdio subprocess transport (vision capability)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

from zsearch import __version__

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30.0
CALL_TIMEOUT = 120.0
STOP_TIMEOUT = 5.0
LINE_LIMIT = 16 * 1024 * 1024  # tool results can carry large base64 payloads

VISION_COMMAND = "npx"
VISION_ARGS = ["-y", "@z_ai/mcp-server"]


class StdioTransportError(Exception):
    """Raised when stdio MCP transport communication fails."""


class StdioTransport:
    """
    Communicate with an MCP server over stdin/stdout (line-delimited JSON-RPC).

    Use as an async context manager to spawn, initialize, and always stop
    the subprocess::

        async with StdioTransport("npx", ["-y", "@z_ai/mcp-server"], env) as t:
            result = await t.call_tool("image_analysis", {...})
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        call_timeout: float = CALL_TIMEOUT,
    ):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._request_id = 0
        self._lock = asyncio.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the MCP server subprocess."""
        if self.is_running:
            return

        merged_env = {**os.environ, **self.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=merged_env,
                limit=LINE_LIMIT,
            )
        except FileNotFoundError as exc:
            raise StdioTransportError(
                f"MCP server command not found: {self.command}. "
                "Make sure Node.js and npx are installed."
            ) from exc

    async def stop(self) -> None:
        """Terminate the MCP server subprocess."""
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), STOP_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def __aenter__(self) -> "StdioTransport":
        await self.start()
        try:
            await self.initialize()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    async def _write(self, message: Dict[str, Any]) -> None:
        assert self._process is not None and self._process.stdin is not None
        self._process.stdin.write((json.dumps(message) + "\n").encode())
        await self._process.stdin.drain()

    async def _read_response(self, request_id: int) -> Dict[str, Any]:
        assert self._process is not None and self._process.stdout is not None
        while True:
            raw = await self._process.stdout.readline()
            if not raw:
                raise StdioTransportError("MCP server closed connection (empty response)")
            try:
                message = json.loads(raw.decode())
            except ValueError:
                logger.debug("Skipping non-JSON line from MCP server: %r", raw[:200])
                continue
            # Server notifications and stale replies carry no matching id.
            if isinstance(message, dict) and message.get("id") == request_id:
                return message

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a JSON-RPC request and return the result."""
        if not self.is_running:
            await self.start()

        async with self._lock:
            self._request_id += 1
            request: Dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": self._request_id,
                "method": method,
            }
            if params:
                request["params"] = params

            try:
                await self._write(request)
                response = await asyncio.wait_for(
                    self._read_response(self._request_id),
                    timeout or self.call_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise StdioTransportError(
                    f"Operation '{method}' timed out after {timeout or self.call_timeout:g}s"
                ) from exc
            except (BrokenPipeError, OSError) as exc:
                raise StdioTransportError(f"MCP transport error: {exc}") from exc

        if "error" in response:
            err = response["error"] or {}
            raise StdioTransportError(f"MCP error {err.get('code')}: {err.get('message')}")

        return response.get("result") or {}

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        try:
            await self._write(message)
        except (BrokenPipeError, OSError) as exc:
            raise StdioTransportError(f"MCP transport error: {exc}") from exc

    # ── MCP Protocol ──────────────────────────────────────────────────────

    async def initialize(self) -> Dict[str, Any]:
        """Perform MCP initialize handshake."""
        result = await self.send(
            "initialize",
            {
                "protocolVersion": "2024-11-05",
                "capabilities": {},
                "clientInfo": {"name": "zsearch", "version": __version__},
            },
            timeout=self.connect_timeout,
        )
        await self.notify("notifications/initialized")
        return result

    async def list_tools(self) -> List[Dict[str, Any]]:
        """Fetch the tool list from the MCP server."""
        result = await self.send("tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call a tool on the MCP server."""
        return await self.send("tools/call", {"name": name, "arguments": arguments or {}})


def vision_transport(api_key: str, mode: str = "ZAI") -> StdioTransport:
    """Transport for the vendor's vision MCP server package."""
    return StdioTransport(
        command=VISION_COMMAND,
        args=list(VISION_ARGS),
        env={"Z_AI_API_KEY": api_key, "Z_AI_MODE": mode},
    )
