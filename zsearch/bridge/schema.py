"""Data models for sessions, endpoint classes, and tool descriptors."""

from __future__ import annotations

import itertools
import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

SESSION_TTL_MS = 3_600_000  # 1 hour

_request_ids = itertools.count(int(time.time() * 1000))


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_request_id() -> int:
    """Process-unique JSON-RPC request id, seeded from the clock."""
    return next(_request_ids)


class EndpointClass(str, Enum):
    """The three remote capabilities reachable through the session protocol."""

    WEB_SEARCH = "web_search"
    WEB_READER = "web_reader"
    REPO_READER = "repo_reader"


class SessionRecord(BaseModel):
    """A cached session id for one ``(endpoint, credential)`` pair."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    endpoint: str
    created_at: int = Field(alias="createdAt")
    expires_at: int = Field(alias="expiresAt")

    def is_valid(self, now: int) -> bool:
        return now < self.expires_at

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ToolDef(BaseModel):
    """Descriptor for a callable tool, as listed by ``zsearch tools``."""

    name: str
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = Field(default=None, alias="inputSchema")

    model_config = ConfigDict(populate_by_name=True)

    def summary(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description}

    def full(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def build_tool_call(tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """JSON-RPC 2.0 ``tools/call`` envelope."""
    return {
        "jsonrpc": "2.0",
        "id": next_request_id(),
        "method": "tools/call",
        "params": {
            "name": tool_name,
            "arguments": arguments or {},
        },
    }
