"""
zsearch Chat Client - OpenAI-compatible chat completions against Z.AI.

Used by the ``model`` command and the stdio tool host.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from zsearch.bridge.acquirer import client_scope

DEFAULT_MODEL = "GLM-4.7"


class ChatError(Exception):
    """Raised when the chat completions API returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ChatResult:
    """Response from the chat completions API."""

    content: str
    model: str
    finish_reason: str = "stop"
    token_usage: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


async def chat_completion(
    messages: List[Dict[str, str]],
    api_base_url: str,
    api_key: str,
    model: str = DEFAULT_MODEL,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    timeout: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> ChatResult:
    """
    Generate a chat completion.

    Args:
        messages: Conversation messages (``role``/``content`` dicts).
        api_base_url: API root, e.g. ``https://api.z.ai/api/coding/paas/v4``.
        api_key: Bearer token.
        model: Model identifier.
        max_tokens: Completion limit, omitted from the request when None.
        temperature: Sampling temperature, omitted when None.
        timeout: Request timeout in seconds.
        client: Shared HTTP client; a short-lived one is used otherwise.

    Returns:
        ChatResult with the first choice.

    Raises:
        ChatError: On non-2xx responses, transport errors or malformed bodies.
    """
    payload: Dict[str, Any] = {"model": model, "messages": messages}
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if temperature is not None:
        payload["temperature"] = temperature

    try:
        async with client_scope(client) as http:
            response = await http.post(
                f"{api_base_url.rstrip('/')}/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=timeout,
            )
    except httpx.HTTPError as e:
        raise ChatError(f"Chat request failed: {e}")

    if not response.is_success:
        raise ChatError(
            f"API request failed: {response.status_code} {response.text}".rstrip(),
            status_code=response.status_code,
        )

    try:
        data = response.json()
        choice = data["choices"][0]
        content = choice["message"]["content"] or ""
    except (ValueError, KeyError, IndexError, TypeError):
        raise ChatError("Unexpected chat completion response")

    usage = data.get("usage") or {}
    return ChatResult(
        content=content,
        model=data.get("model", model),
        finish_reason=choice.get("finish_reason") or "stop",
        token_usage=usage.get("total_tokens", 0),
        raw=data,
    )
