"""Response Normalizer - unwraps the content-array envelope of tool results."""

from __future__ import annotations

import json
from typing import Any, Sequence


def _part_text(part: Any) -> str:
    if isinstance(part, dict):
        text = part.get("text")
        if text:
            return str(text)
        return json.dumps(part, ensure_ascii=False, default=str)
    if isinstance(part, str):
        return part
    return json.dumps(part, ensure_ascii=False, default=str)


def normalize(content: Any) -> Any:
    """
    Extract the usable value from an MCP ``result.content`` field.

    A content array is flattened to its text parts joined by newlines. The
    remote service often ships JSON inside those text parts, so text that
    looks like a JSON object or array is parsed; text that fails to parse
    is returned unchanged. Anything that is not an array is already
    structured and comes back as-is.

    Never raises.
    """
    if not isinstance(content, Sequence) or isinstance(content, (str, bytes)):
        return content

    text = "\n".join(_part_text(part) for part in content)
    stripped = text.strip()
    if stripped.startswith("{") or stripped.startswith("["):
        try:
            return json.loads(stripped)
        except ValueError:
            return text
    return text
