"""Fallback Tool Invoker that POSTs through a ``curl`` subprocess."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

from zsearch.bridge.endpoints import Endpoints, with_authorization
from zsearch.bridge.errors import ToolCallError
from zsearch.bridge.frames import ResponseDecoder, resolve
from zsearch.bridge.invoker import ACCEPT, CALL_TIMEOUT, ToolInvoker
from zsearch.bridge.schema import EndpointClass, build_tool_call

logger = logging.getLogger(__name__)

STATUS_MARKER = "\n%{http_code}"


def split_status(output: str) -> Tuple[str, Optional[int]]:
    """Separate the body from the status line written by ``-w``."""
    body, sep, last = output.rpartition("\n")
    if sep and last.strip().isdigit():
        return body, int(last.strip())
    return output, None


class CurlToolInvoker(ToolInvoker):
    """
    Same contract as ``SessionToolInvoker``, but against the plain-HTTP
    ``/mcp`` endpoint and without in-process streaming. The response is
    parsed with the shared ``ResponseDecoder``, so SSE-framed and bare
    JSON bodies behave identically across both transports.
    """

    def __init__(
        self,
        curl: str = "curl",
        timeout: float = CALL_TIMEOUT,
        endpoints: Optional[Endpoints] = None,
    ):
        super().__init__(timeout=timeout, endpoints=endpoints)
        self.curl = curl

    @property
    def transport_name(self) -> str:
        return "curl"

    def build_command(self, url: str, request: Dict[str, Any]) -> list:
        return [
            self.curl,
            "-s",
            "-X", "POST",
            "-H", "Content-Type: application/json",
            "-H", f"Accept: {ACCEPT}",
            "-w", STATUS_MARKER,
            "-d", json.dumps(request),
            url,
        ]

    async def call(
        self,
        endpoint_class: EndpointClass,
        credential: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Any:
        endpoint = self.endpoints.http_url(endpoint_class)
        url = with_authorization(endpoint, credential)
        request = build_tool_call(tool_name, arguments)
        logger.debug("tools/call %s (id=%s) via curl to %s", tool_name, request["id"], endpoint)

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(url, request),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ToolCallError(f"curl spawn error: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except asyncio.TimeoutError as exc:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise ToolCallError(
                f"Timeout waiting for MCP response from {endpoint}",
                cause=exc,
                timed_out=True,
            ) from exc

        if process.returncode != 0:
            raise ToolCallError(
                f"curl exited with code {process.returncode}. "
                f"stderr: {stderr.decode('utf-8', 'replace').strip()}"
            )

        body, status = split_status(stdout.decode("utf-8", "replace"))
        if status is not None and not 200 <= status < 300:
            raise ToolCallError(
                f"MCP request failed: {status} {body.strip()}".rstrip(),
                status_code=status,
            )

        decoder = ResponseDecoder()
        frame = decoder.feed(body)
        if frame is None:
            frame = decoder.finish()
        if frame is None:
            raise ToolCallError(f"No result in MCP response: {decoder.head}")
        return resolve(frame)
