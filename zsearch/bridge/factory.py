"""Builds the configured Tool Invoker."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx

from zsearch.bridge.acquirer import SessionAcquirer
from zsearch.bridge.curl import CurlToolInvoker
from zsearch.bridge.endpoints import Endpoints
from zsearch.bridge.invoker import SessionToolInvoker, ToolInvoker
from zsearch.bridge.session_store import FileSessionBackend, SessionBackend, SessionStore
from zsearch.validation.config import ZSearchConfig

Builder = Callable[..., ToolInvoker]


def _session_invoker(
    config: ZSearchConfig,
    client: Optional[httpx.AsyncClient] = None,
    backend: Optional[SessionBackend] = None,
) -> ToolInvoker:
    store = SessionStore(
        SessionAcquirer(client=client),
        backend=backend or FileSessionBackend(config.session_file),
        ttl_ms=config.sessions.ttl_ms,
    )
    return SessionToolInvoker(
        store,
        client=client,
        timeout=config.timeout,
        endpoints=Endpoints(config.endpoints.base_url),
    )


def _curl_invoker(config: ZSearchConfig, **_: object) -> ToolInvoker:
    return CurlToolInvoker(timeout=config.timeout, endpoints=Endpoints(config.endpoints.base_url))


class InvokerFactory:
    """Factory for creating Tool Invoker instances by transport name."""

    _transports: Dict[str, Builder] = {
        "session": _session_invoker,
        "curl": _curl_invoker,
    }

    @classmethod
    def register(cls, name: str, builder: Builder) -> None:
        """Register a new transport."""
        cls._transports[name] = builder

    @classmethod
    def create(
        cls,
        config: ZSearchConfig,
        client: Optional[httpx.AsyncClient] = None,
        backend: Optional[SessionBackend] = None,
    ) -> ToolInvoker:
        """
        Create the invoker selected by ``config.transport``.

        Args:
            config: Merged zsearch configuration.
            client: Shared HTTP client (session transport only).
            backend: Session storage override (session transport only).

        Raises:
            ValueError: If the transport is not recognized.
        """
        if config.transport not in cls._transports:
            raise ValueError(f"Unknown transport: {config.transport}")
        return cls._transports[config.transport](config, client=client, backend=backend)

    @classmethod
    def available_transports(cls) -> List[str]:
        return list(cls._transports.keys())
