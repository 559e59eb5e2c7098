"""Error taxonomy for the MCP bridge."""

from __future__ import annotations

from typing import Optional

AUTH_STATUS_CODES = (401, 403)


class BridgeError(Exception):
    """
    Base class for every failure surfaced by the bridge.

    ``status_code`` holds the HTTP status when the failure came from a
    response, so the command layer can tell authentication failures apart
    from generic network trouble. ``cause`` keeps the wrapped transport
    exception, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in AUTH_STATUS_CODES


class SessionAcquisitionError(BridgeError):
    """Raised when no session id could be obtained from the SSE handshake."""


class ToolCallError(BridgeError):
    """Raised when a ``tools/call`` round trip does not yield a usable result."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        timed_out: bool = False,
    ):
        super().__init__(message, status_code=status_code, cause=cause)
        self.timed_out = timed_out
