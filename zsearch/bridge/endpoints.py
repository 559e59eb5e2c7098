"""
Endpoint tables and URL construction for the remote MCP service.

The service reads the credential from the ``Authorization`` query
parameter and parses it without URL-decoding, so the credential is always
placed into the query string verbatim. Characters such as ``+``, ``/``,
``?``, ``&`` and ``=`` must reach the server exactly as given.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from zsearch.bridge.schema import EndpointClass

DEFAULT_MCP_BASE_URL = "https://api.z.ai/api/mcp"

ENDPOINT_SLUGS: Dict[EndpointClass, str] = {
    EndpointClass.WEB_SEARCH: "web_search_prime",
    EndpointClass.WEB_READER: "web_reader",
    EndpointClass.REPO_READER: "zread",
}

SSE_SUFFIX = "/sse"


def with_authorization(endpoint: str, credential: str) -> str:
    """Append the raw credential as the ``Authorization`` query parameter."""
    sep = "&" if "?" in endpoint else "?"
    return f"{endpoint}{sep}Authorization={credential}"


def message_base(sse_endpoint: str) -> str:
    """``https://host/api/mcp/x/sse`` -> ``https://host/api/mcp/x``."""
    base = sse_endpoint.split("?", 1)[0].rstrip("/")
    if base.endswith(SSE_SUFFIX):
        base = base[: -len(SSE_SUFFIX)]
    return base


def message_url(sse_endpoint: str, session_id: str, credential: str) -> str:
    """Message-submission URL for a session opened on ``sse_endpoint``."""
    return f"{message_base(sse_endpoint)}/message?sessionId={session_id}&Authorization={credential}"


@dataclass
class Endpoints:
    """Resolves endpoint classes to concrete SSE and plain-HTTP URLs."""

    base_url: str = DEFAULT_MCP_BASE_URL

    def _root(self, endpoint_class: EndpointClass) -> str:
        slug = ENDPOINT_SLUGS[EndpointClass(endpoint_class)]
        return f"{self.base_url.rstrip('/')}/{slug}"

    def sse_url(self, endpoint_class: EndpointClass) -> str:
        return self._root(endpoint_class) + SSE_SUFFIX

    def http_url(self, endpoint_class: EndpointClass) -> str:
        return self._root(endpoint_class) + "/mcp"
