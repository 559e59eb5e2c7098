"""Tests for capability wrappers and tool routing."""

import pytest

from zsearch.bridge import retry as retry_module
from zsearch.bridge.capabilities import (
    HTTP_TOOLS,
    UnknownToolError,
    filter_tools,
    find_http_tool,
    parse_owner_repo,
    route_call,
    web_reader,
    web_search,
    zread,
)
from zsearch.bridge.errors import ToolCallError
from zsearch.bridge.schema import EndpointClass, ToolDef
from zsearch.validation.config import ZSearchConfig

KEY = "key-1234567"


class RecordingInvoker:
    """ToolInvoker double that records calls and replays scripted outcomes."""

    transport_name = "fake"

    def __init__(self, *outcomes):
        self.calls = []
        self.outcomes = list(outcomes)

    async def call(self, endpoint_class, credential, tool_name, arguments=None):
        self.calls.append((endpoint_class, credential, tool_name, arguments))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return {"ok": True}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    async def fake_sleep(delay):
        pass

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)


class TestWrappers:
    """Tests for the HTTP capability argument mapping."""

    @pytest.mark.asyncio
    async def test_web_search(self):
        invoker = RecordingInvoker()
        await web_search(invoker, KEY, "python asyncio", count=5, time_range="oneWeek")

        assert invoker.calls == [(
            EndpointClass.WEB_SEARCH,
            KEY,
            "webSearchPrime",
            {"search_query": "python asyncio", "count": 5, "search_recency_filter": "oneWeek"},
        )]

    @pytest.mark.asyncio
    async def test_web_search_without_time_range(self):
        invoker = RecordingInvoker()
        await web_search(invoker, KEY, "q")
        assert invoker.calls[0][3] == {"search_query": "q", "count": 10}

    @pytest.mark.asyncio
    async def test_web_reader_flags(self):
        invoker = RecordingInvoker()
        await web_reader(invoker, KEY, "https://example.com", retain_images=False, no_gfm=True)

        endpoint_class, _, tool_name, arguments = invoker.calls[0]
        assert endpoint_class is EndpointClass.WEB_READER
        assert tool_name == "webReader"
        assert arguments == {"url": "https://example.com", "retain_images": False, "no_gfm": True}

    @pytest.mark.asyncio
    async def test_web_reader_minimal(self):
        invoker = RecordingInvoker()
        await web_reader(invoker, KEY, "https://example.com")
        assert invoker.calls[0][3] == {"url": "https://example.com"}

    @pytest.mark.asyncio
    async def test_zread(self):
        invoker = RecordingInvoker()
        await zread(invoker, KEY, "read_file", {"owner": "o", "repo": "r", "path": "README.md"})
        assert invoker.calls[0][:3] == (EndpointClass.REPO_READER, KEY, "read_file")

    @pytest.mark.asyncio
    async def test_zread_unknown_method(self):
        with pytest.raises(UnknownToolError):
            await zread(RecordingInvoker(), KEY, "delete_repo", {})


class TestRouteCall:
    """Tests for route_call."""

    @pytest.mark.asyncio
    async def test_routes_by_qualified_name(self):
        invoker = RecordingInvoker()
        config = ZSearchConfig(api_key=KEY)

        await route_call(invoker, config, "zai.search.webSearchPrime", {"search_query": "q"})
        await route_call(invoker, config, "zai.read.webReader", {"url": "u"})
        await route_call(invoker, config, "zai.zread.get_repo_structure", {"owner": "o", "repo": "r"})

        assert [(call[0], call[2]) for call in invoker.calls] == [
            (EndpointClass.WEB_SEARCH, "webSearchPrime"),
            (EndpointClass.WEB_READER, "webReader"),
            (EndpointClass.REPO_READER, "get_repo_structure"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(UnknownToolError) as exc_info:
            await route_call(RecordingInvoker(), ZSearchConfig(api_key=KEY), "zai.zread.nope")

        assert exc_info.value.message == "Unknown tool: zai.zread.nope"

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self):
        invoker = RecordingInvoker(ToolCallError("boom"))

        with pytest.raises(ToolCallError):
            await route_call(invoker, ZSearchConfig(api_key=KEY), "zai.read.webReader", {"url": "u"})

        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_global_retry(self):
        invoker = RecordingInvoker(ToolCallError("boom"), ToolCallError("boom"), "third time")
        config = ZSearchConfig(api_key=KEY, retry={"global_count": 2})

        assert await route_call(invoker, config, "zai.read.webReader", {"url": "u"}) == "third time"
        assert len(invoker.calls) == 3

    @pytest.mark.asyncio
    async def test_auth_failures_not_retried(self):
        invoker = RecordingInvoker(ToolCallError("denied", status_code=401))
        config = ZSearchConfig(api_key=KEY, retry={"global_count": 3})

        with pytest.raises(ToolCallError):
            await route_call(invoker, config, "zai.read.webReader", {"url": "u"})

        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_vision_names_use_stdio(self):
        """Test that zai.vision.* never touches the HTTP invoker."""
        opened = []

        class FakeTransport:
            def __init__(self, api_key, mode):
                opened.append((api_key, mode))

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc_info):
                return None

            async def call_tool(self, name, arguments):
                return {"content": [{"type": "text", "text": f"{name}:{arguments['image_path']}"}]}

        invoker = RecordingInvoker()
        config = ZSearchConfig(api_key=KEY, mode="ZHIPU")

        result = await route_call(
            invoker, config, "zai.vision.image_analysis", {"image_path": "a.png"}, FakeTransport
        )

        assert result == "image_analysis:a.png"
        assert opened == [(KEY, "ZHIPU")]
        assert invoker.calls == []


class TestHelpers:
    def test_parse_owner_repo(self):
        assert parse_owner_repo("pallets/click") == ("pallets", "click")

    @pytest.mark.parametrize("value", ["click", "a/b/c", "/click", "pallets/", ""])
    def test_parse_owner_repo_invalid(self, value):
        with pytest.raises(ValueError, match="owner/repo"):
            parse_owner_repo(value)

    def test_filter_tools_matches_description(self):
        tools = [ToolDef(name="a", description="Read a FILE"), ToolDef(name="b", description="search")]
        assert [tool.name for tool in filter_tools(tools, "file")] == ["a"]

    def test_filter_tools_empty_needle(self):
        assert filter_tools(HTTP_TOOLS, None) == HTTP_TOOLS

    def test_find_http_tool(self):
        assert find_http_tool("zai.zread.read_file").input_schema["required"] == ["owner", "repo", "path"]
        assert find_http_tool("zai.vision.image_analysis") is None


class TestVisionResult:
    """Tests for how vision results are unwrapped."""

    @pytest.mark.asyncio
    async def test_null_content_returns_the_result(self):
        class NullContentTransport:
            def __init__(self, api_key, mode):
                pass

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc_info):
                return None

            async def call_tool(self, name, arguments):
                return {"content": None, "model": "glm-4.5v"}

        result = await route_call(
            RecordingInvoker(), ZSearchConfig(api_key=KEY), "zai.vision.image_analysis", {}, NullContentTransport
        )

        assert result == {"content": None, "model": "glm-4.5v"}
