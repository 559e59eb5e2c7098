"""Tests for the curl fallback Tool Invoker."""

import asyncio
import json

import pytest

from zsearch.bridge import curl as curl_module
from zsearch.bridge.curl import CurlToolInvoker, split_status
from zsearch.bridge.errors import ToolCallError
from zsearch.bridge.schema import EndpointClass

KEY = "abc+def/ghi="


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0, hang: bool = False):
        self._stdout = stdout
        self._stderr = stderr
        self._final_code = returncode
        self.returncode = None
        self.hang = hang
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(3600)
        self.returncode = self._final_code
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def spawn(monkeypatch):
    """Patch subprocess creation; returns the recorded argv list and a setter."""
    calls = []
    state = {"process": FakeProcess()}

    async def fake_exec(*argv, **kwargs):
        calls.append(list(argv))
        if isinstance(state["process"], Exception):
            raise state["process"]
        return state["process"]

    monkeypatch.setattr(curl_module.asyncio, "create_subprocess_exec", fake_exec)

    def use(process):
        state["process"] = process
        return calls

    return use


def body_with_status(body: str, status: int = 200) -> bytes:
    return f"{body}\n{status}".encode()


class TestSplitStatus:
    def test_split(self):
        assert split_status('{"a":1}\n200') == ('{"a":1}', 200)

    def test_multiline_body(self):
        assert split_status("data: x\n\n404") == ("data: x\n", 404)

    def test_no_status(self):
        assert split_status("no status") == ("no status", None)


class TestCurlToolInvoker:
    """Tests for CurlToolInvoker.call."""

    @pytest.mark.asyncio
    async def test_sse_body(self, spawn):
        payload = {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": '{"ok": true}'}]}}
        calls = spawn(FakeProcess(stdout=body_with_status(f"event: message\ndata: {json.dumps(payload)}\n")))

        value = await CurlToolInvoker().call(EndpointClass.WEB_SEARCH, KEY, "webSearchPrime", {"search_query": "q"})

        assert value == {"ok": True}
        argv = calls[0]
        assert argv[0] == "curl"
        assert argv[-1] == f"https://api.z.ai/api/mcp/web_search_prime/mcp?Authorization={KEY}"
        assert "Accept: application/json, text/event-stream" in argv
        request = json.loads(argv[argv.index("-d") + 1])
        assert request["params"] == {"name": "webSearchPrime", "arguments": {"search_query": "q"}}

    @pytest.mark.asyncio
    async def test_bare_json_body(self, spawn):
        payload = {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": "hello"}]}}
        spawn(FakeProcess(stdout=body_with_status(json.dumps(payload))))

        assert await CurlToolInvoker().call(EndpointClass.WEB_READER, KEY, "webReader") == "hello"

    @pytest.mark.asyncio
    async def test_rpc_error(self, spawn):
        payload = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad tool"}}
        spawn(FakeProcess(stdout=body_with_status(json.dumps(payload))))

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker().call(EndpointClass.REPO_READER, KEY, "nope")

        assert exc_info.value.message == "bad tool"

    @pytest.mark.asyncio
    async def test_http_error_status(self, spawn):
        spawn(FakeProcess(stdout=body_with_status("unauthorized", 401)))

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker().call(EndpointClass.REPO_READER, KEY, "search_doc")

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_auth_failure

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, spawn):
        spawn(FakeProcess(stderr=b"Could not resolve host", returncode=6))

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker().call(EndpointClass.WEB_READER, KEY, "webReader")

        assert "code 6" in exc_info.value.message
        assert "Could not resolve host" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, spawn):
        process = FakeProcess(hang=True)
        spawn(process)

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker(timeout=0.1).call(EndpointClass.WEB_READER, KEY, "webReader")

        assert exc_info.value.timed_out is True
        assert process.killed is True

    @pytest.mark.asyncio
    async def test_spawn_error(self, spawn):
        spawn(FileNotFoundError("curl"))

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker().call(EndpointClass.WEB_READER, KEY, "webReader")

        assert "spawn" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_no_result(self, spawn):
        spawn(FakeProcess(stdout=body_with_status(": keep-alive\n")))

        with pytest.raises(ToolCallError) as exc_info:
            await CurlToolInvoker().call(EndpointClass.WEB_READER, KEY, "webReader")

        assert exc_info.value.message.startswith("No result in MCP response")

    def test_transport_name(self):
        assert CurlToolInvoker().transport_name == "curl"
