"""
Tagged-union view of the JSON-RPC payloads a tool call can produce.

Every payload is classified into exactly one frame, checked in a fixed
order: error, content array, bare result, and finally "keep reading".
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from zsearch.bridge.errors import ToolCallError
from zsearch.bridge.normalize import normalize
from zsearch.bridge.sse import SSELineParser

DEFAULT_ERROR_MESSAGE = "MCP tool call failed"


@dataclass(frozen=True)
class ErrorFrame:
    message: str
    code: Optional[int] = None


@dataclass(frozen=True)
class ContentFrame:
    content: Any


@dataclass(frozen=True)
class ResultFrame:
    value: Any


@dataclass(frozen=True)
class PendingFrame:
    raw: Any = None


Frame = Union[ErrorFrame, ContentFrame, ResultFrame, PendingFrame]


def _error_message(error: Any) -> ErrorFrame:
    if isinstance(error, dict):
        message = error.get("message") or json.dumps(error, ensure_ascii=False)
        code = error.get("code")
        return ErrorFrame(str(message), code if isinstance(code, int) else None)
    return ErrorFrame(str(error) or DEFAULT_ERROR_MESSAGE)


def _first_text(content: Any) -> Optional[str]:
    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, dict) and first.get("text"):
            return str(first["text"])
        if isinstance(first, str):
            return first
    return None


def classify(payload: Any) -> Frame:
    """Classify one decoded JSON-RPC payload."""
    if not isinstance(payload, dict):
        return PendingFrame(payload)

    if payload.get("error") is not None:
        return _error_message(payload["error"])

    result = payload.get("result")
    if isinstance(result, dict):
        if result.get("isError"):
            return ErrorFrame(_first_text(result.get("content")) or DEFAULT_ERROR_MESSAGE)
        if result.get("content") is not None:
            return ContentFrame(result["content"])

    if result is not None:
        return ResultFrame(result)

    return PendingFrame(payload)


def decode(text: str) -> Frame:
    """Parse a raw payload string; anything unparseable is a pending frame."""
    if not text:
        return PendingFrame()
    try:
        payload = json.loads(text)
    except ValueError:
        return PendingFrame(text)
    return classify(payload)


def is_terminal(frame: Frame) -> bool:
    return not isinstance(frame, PendingFrame)


def resolve(frame: Frame) -> Any:
    """Turn a terminal frame into the call's value, or raise its error."""
    if isinstance(frame, ErrorFrame):
        raise ToolCallError(frame.message)
    if isinstance(frame, ContentFrame):
        return normalize(frame.content)
    if isinstance(frame, ResultFrame):
        return frame.value
    raise ToolCallError("MCP response carried no result")


class ResponseDecoder:
    """
    Feed response text as it arrives; get back the first terminal frame.

    Handles both response shapes without knowing in advance which one the
    server picked: SSE ``data:`` lines are classified as soon as each line
    completes, and a body that never contained a ``data:`` line is parsed
    as a single JSON document at the end.
    """

    def __init__(self) -> None:
        self._lines = SSELineParser()
        self._body: List[str] = []
        self.head = ""

    def feed(self, chunk: str) -> Optional[Frame]:
        if len(self.head) < 200:
            self.head = (self.head + chunk)[:200]
        frame = self._first_terminal(self._lines.feed(chunk))
        # Whole-body fallback is only needed for unframed responses.
        if self._lines.saw_data:
            self._body.clear()
        else:
            self._body.append(chunk)
        return frame

    def finish(self) -> Optional[Frame]:
        frame = self._first_terminal(self._lines.flush())
        if frame is not None:
            return frame
        if not self._lines.saw_data:
            frame = decode("".join(self._body).strip())
            if is_terminal(frame):
                return frame
        return None

    @staticmethod
    def _first_terminal(payloads: List[str]) -> Optional[Frame]:
        for payload in payloads:
            frame = decode(payload)
            if is_terminal(frame):
                return frame
        return None
