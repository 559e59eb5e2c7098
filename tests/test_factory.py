"""Tests for InvokerFactory."""

import pytest

from zsearch.bridge.curl import CurlToolInvoker
from zsearch.bridge.factory import InvokerFactory
from zsearch.bridge.invoker import SessionToolInvoker
from zsearch.bridge.session_store import MemorySessionBackend
from zsearch.validation.config import ZSearchConfig


class TestInvokerFactory:
    """Tests for InvokerFactory.create."""

    def test_default_is_session(self, tmp_path):
        invoker = InvokerFactory.create(ZSearchConfig(cache={"dir": str(tmp_path)}))
        assert isinstance(invoker, SessionToolInvoker)
        assert invoker.transport_name == "session"

    def test_session_backend_override(self):
        backend = MemorySessionBackend()
        invoker = InvokerFactory.create(ZSearchConfig(), backend=backend)
        assert invoker.store.backend is backend

    def test_curl(self):
        invoker = InvokerFactory.create(ZSearchConfig(transport="curl", timeout=7.0))
        assert isinstance(invoker, CurlToolInvoker)
        assert invoker.timeout == 7.0

    def test_unknown_transport(self):
        config = ZSearchConfig()
        config.transport = "pigeon"
        with pytest.raises(ValueError, match="Unknown transport: pigeon"):
            InvokerFactory.create(config)

    def test_available_transports(self):
        assert {"session", "curl"} <= set(InvokerFactory.available_transports())
