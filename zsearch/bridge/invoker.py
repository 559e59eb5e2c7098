"""
Tool Invoker - issues ``tools/call`` over the session-based SSE transport.

``ToolInvoker`` is the one interface callers see; the session transport
lives here and the ``curl`` subprocess fallback in ``zsearch.bridge.curl``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from zsearch.bridge.acquirer import client_scope
from zsearch.bridge.endpoints import Endpoints, message_url
from zsearch.bridge.errors import SessionAcquisitionError, ToolCallError
from zsearch.bridge.frames import ResponseDecoder, resolve
from zsearch.bridge.schema import EndpointClass, build_tool_call
from zsearch.bridge.session_store import SessionStore

logger = logging.getLogger(__name__)

CALL_TIMEOUT = 30.0
ACCEPT = "application/json, text/event-stream"


class ToolInvoker(ABC):
    """
    Calls a remote tool and returns its normalized result.

    Implementations raise ``ToolCallError`` for every failure and never
    return an empty success.
    """

    def __init__(self, timeout: float = CALL_TIMEOUT, endpoints: Optional[Endpoints] = None):
        self.timeout = timeout
        self.endpoints = endpoints or Endpoints()

    @property
    @abstractmethod
    def transport_name(self) -> str:
        pass

    @abstractmethod
    async def call(
        self,
        endpoint_class: EndpointClass,
        credential: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Any:
        pass


class SessionToolInvoker(ToolInvoker):
    """
    Session-based transport.

    1. Get a session id for the class's SSE endpoint from the store.
    2. POST the JSON-RPC envelope to ``.../message?sessionId=...``.
    3. Stream the body through a ``ResponseDecoder`` until the first
       terminal frame, all within ``timeout`` seconds.
    """

    def __init__(
        self,
        store: SessionStore,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = CALL_TIMEOUT,
        endpoints: Optional[Endpoints] = None,
    ):
        super().__init__(timeout=timeout, endpoints=endpoints)
        self.store = store
        self._client = client

    @property
    def transport_name(self) -> str:
        return "session"

    async def call(
        self,
        endpoint_class: EndpointClass,
        credential: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Any:
        sse_endpoint = self.endpoints.sse_url(endpoint_class)

        try:
            session_id = await self.store.acquire_session(sse_endpoint, credential)
        except SessionAcquisitionError as exc:
            raise ToolCallError(
                f"MCP session acquisition failed: {exc.message}",
                status_code=exc.status_code,
                cause=exc,
            ) from exc

        url = message_url(sse_endpoint, session_id, credential)
        request = build_tool_call(tool_name, arguments)
        logger.debug(
            "tools/call %s (id=%s) via %s",
            tool_name, request["id"], EndpointClass(endpoint_class).value,
        )

        try:
            return await asyncio.wait_for(self._post(url, request), self.timeout)
        except asyncio.TimeoutError as exc:
            raise ToolCallError(
                f"Timed out after {self.timeout:g}s waiting for {tool_name} result",
                cause=exc,
                timed_out=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ToolCallError(f"MCP request failed: {exc}", cause=exc) from exc

    async def _post(self, url: str, request: Dict[str, Any]) -> Any:
        async with client_scope(self._client) as client:
            async with client.stream(
                "POST",
                httpx.URL(url),
                content=json.dumps(request),
                headers={"Content-Type": "application/json", "Accept": ACCEPT},
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", "replace")
                    raise ToolCallError(
                        f"MCP request failed: {response.status_code} {body}".rstrip(),
                        status_code=response.status_code,
                    )

                decoder = ResponseDecoder()
                async for chunk in response.aiter_text():
                    frame = decoder.feed(chunk)
                    if frame is not None:
                        return resolve(frame)

                frame = decoder.finish()
                if frame is not None:
                    return resolve(frame)

        raise ToolCallError("MCP stream ended without result")
