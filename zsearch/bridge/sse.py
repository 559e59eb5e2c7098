"""
Incremental Server-Sent-Event parsing.

Both parsers accept arbitrarily split text chunks, so a ``data:`` line or
a ``sessionId=`` value broken across two network reads is reassembled
before anything is reported.
"""

from __future__ import annotations

import re
from typing import List, Optional

DATA_PREFIX = "data:"

# A value is only complete once its terminator has arrived.
_TERMINATED_SESSION_ID = re.compile(r"sessionId=([^&\s]+)(?=[&\s])")
_SESSION_ID = re.compile(r"sessionId=([^&\s]+)")


class SSELineParser:
    """
    Buffer text, split on newlines, and yield the payload of ``data:`` lines.

    ``saw_data`` records whether any ``data:`` line was seen at all, which
    tells the caller whether the body was SSE-framed or plain JSON.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.saw_data = False

    def feed(self, chunk: str) -> List[str]:
        self._buffer += chunk
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return self._extract(lines)

    def flush(self) -> List[str]:
        """Process a final line that arrived without a trailing newline."""
        rest, self._buffer = self._buffer, ""
        return self._extract([rest]) if rest else []

    def _extract(self, lines: List[str]) -> List[str]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if line.startswith(DATA_PREFIX):
                self.saw_data = True
                payloads.append(line[len(DATA_PREFIX):].strip())
        return payloads


class SessionIdScanner:
    """Scan cumulative handshake text for ``sessionId=<value>``."""

    def __init__(self) -> None:
        self._buffer = ""

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def text(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> Optional[str]:
        self._buffer += chunk
        match = _TERMINATED_SESSION_ID.search(self._buffer)
        return match.group(1) if match else None

    def finish(self) -> Optional[str]:
        """At end of stream, end-of-text terminates a trailing value too."""
        match = _SESSION_ID.search(self._buffer)
        return match.group(1) if match else None
