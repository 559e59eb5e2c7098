"""Session Acquirer - pulls a session id out of the SSE handshake stream."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from zsearch.bridge.endpoints import with_authorization
from zsearch.bridge.errors import SessionAcquisitionError
from zsearch.bridge.sse import SessionIdScanner

logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT = 5.0
MAX_HANDSHAKE_CHARS = 1000


@asynccontextmanager
async def client_scope(client: Optional[httpx.AsyncClient]) -> AsyncIterator[httpx.AsyncClient]:
    """Use the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=None) as owned:
        yield owned


class SessionAcquirer:
    """
    Open ``GET {endpoint}?Authorization=...`` and read just far enough to
    find ``sessionId=<value>``.

    The handshake stream never ends on its own, so reading is bounded by
    both size (``max_chars``) and time (``timeout``); the stream is closed
    as soon as an id is found or either bound is hit.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = ACQUIRE_TIMEOUT,
        max_chars: int = MAX_HANDSHAKE_CHARS,
    ):
        self._client = client
        self.timeout = timeout
        self.max_chars = max_chars

    async def acquire(self, endpoint: str, credential: str) -> str:
        url = with_authorization(endpoint, credential)
        try:
            return await asyncio.wait_for(self._read_session_id(endpoint, url), self.timeout)
        except asyncio.TimeoutError as exc:
            raise SessionAcquisitionError(
                f"Timed out after {self.timeout:g}s waiting for a session id from {endpoint}",
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise SessionAcquisitionError(
                f"Failed to connect to MCP SSE endpoint {endpoint}: {exc}",
                cause=exc,
            ) from exc

    async def _read_session_id(self, endpoint: str, url: str) -> str:
        logger.debug("Opening SSE session stream at %s", endpoint)
        async with client_scope(self._client) as client:
            async with client.stream(
                "GET", httpx.URL(url), headers={"Accept": "text/event-stream"}
            ) as response:
                if not response.is_success:
                    raise SessionAcquisitionError(
                        f"Failed to connect to MCP SSE endpoint: {response.status_code} "
                        f"{response.reason_phrase}",
                        status_code=response.status_code,
                    )

                scanner = SessionIdScanner()
                async for chunk in response.aiter_text():
                    session_id = scanner.feed(chunk)
                    if session_id:
                        logger.debug("Acquired session %s from %s", session_id, endpoint)
                        return session_id
                    if len(scanner) > self.max_chars:
                        raise SessionAcquisitionError(
                            "Failed to extract session ID from MCP SSE response "
                            f"(no sessionId in first {self.max_chars} characters)"
                        )

                session_id = scanner.finish()
                if session_id:
                    return session_id

        raise SessionAcquisitionError("Failed to extract session ID from MCP SSE response")
