"""Tests for the session store and its backends."""

import asyncio
import json

import pytest

from zsearch.bridge.errors import SessionAcquisitionError
from zsearch.bridge.schema import SessionRecord
from zsearch.bridge.session_store import (
    FileSessionBackend,
    MemorySessionBackend,
    SessionStore,
)

SEARCH_SSE = "https://api.z.ai/api/mcp/web_search_prime/sse"
READER_SSE = "https://api.z.ai/api/mcp/web_reader/sse"


class FakeAcquirer:
    """Hands out sess-1, sess-2, ... and records every acquisition."""

    def __init__(self, delay: float = 0.0, error: Exception = None, delays: dict = None):
        self.calls = []
        self.delay = delay
        self.delays = delays or {}
        self.error = error

    async def acquire(self, endpoint: str, credential: str) -> str:
        self.calls.append((endpoint, credential))
        session_id = f"sess-{len(self.calls)}"
        delay = self.delays.get(credential, self.delay)
        if delay:
            await asyncio.sleep(delay)
        if self.error is not None:
            raise self.error
        return session_id


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def record(session_id: str, expires_at: int, endpoint: str = SEARCH_SSE) -> SessionRecord:
    return SessionRecord(session_id=session_id, endpoint=endpoint, created_at=0, expires_at=expires_at)


class TestSessionStore:
    """Tests for SessionStore.acquire_session."""

    @pytest.mark.asyncio
    async def test_reuses_cached_session(self):
        acquirer = FakeAcquirer()
        store = SessionStore(acquirer, clock=FakeClock())

        first = await store.acquire_session(SEARCH_SSE, "key-1")
        second = await store.acquire_session(SEARCH_SSE, "key-1")

        assert first == second == "sess-1"
        assert len(acquirer.calls) == 1

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self):
        """Test that endpoint and credential both take part in the key."""
        acquirer = FakeAcquirer()
        store = SessionStore(acquirer, clock=FakeClock())

        a = await store.acquire_session(SEARCH_SSE, "key-1")
        b = await store.acquire_session(SEARCH_SSE, "key-2")
        c = await store.acquire_session(READER_SSE, "key-1")

        assert len({a, b, c}) == 3
        assert len(acquirer.calls) == 3

    @pytest.mark.asyncio
    async def test_expired_session_is_replaced(self):
        clock = FakeClock()
        acquirer = FakeAcquirer()
        store = SessionStore(acquirer, ttl_ms=1000, clock=clock)

        assert await store.acquire_session(SEARCH_SSE, "k") == "sess-1"
        clock.now += 999
        assert await store.acquire_session(SEARCH_SSE, "k") == "sess-1"
        clock.now += 1
        assert await store.acquire_session(SEARCH_SSE, "k") == "sess-2"

    @pytest.mark.asyncio
    async def test_record_fields(self):
        backend = MemorySessionBackend()
        store = SessionStore(FakeAcquirer(), backend=backend, ttl_ms=3_600_000, clock=FakeClock(5000))

        await store.acquire_session(SEARCH_SSE, "k")

        saved = backend.records[SessionStore.cache_key(SEARCH_SSE, "k")]
        assert saved.session_id == "sess-1"
        assert saved.endpoint == SEARCH_SSE
        assert saved.created_at == 5000
        assert saved.expires_at == 3_605_000

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_acquisition(self):
        acquirer = FakeAcquirer(delay=0.05)
        store = SessionStore(acquirer, clock=FakeClock())

        results = await asyncio.gather(*(store.acquire_session(SEARCH_SSE, "k") for _ in range(5)))

        assert set(results) == {"sess-1"}
        assert len(acquirer.calls) == 1

    @pytest.mark.asyncio
    async def test_other_keys_do_not_wait(self):
        """Test that a slow acquisition for one key does not block another key."""
        acquirer = FakeAcquirer(delays={"slow": 0.5})
        store = SessionStore(acquirer, clock=FakeClock())

        slow_task = asyncio.ensure_future(store.acquire_session(SEARCH_SSE, "slow"))
        await asyncio.sleep(0.05)
        fast = await asyncio.wait_for(store.acquire_session(READER_SSE, "fast"), 0.3)

        assert fast == "sess-2"
        assert await slow_task == "sess-1"

    @pytest.mark.asyncio
    async def test_acquisition_error_propagates_and_nothing_is_stored(self):
        backend = MemorySessionBackend()
        store = SessionStore(FakeAcquirer(error=SessionAcquisitionError("no id")), backend=backend)

        with pytest.raises(SessionAcquisitionError):
            await store.acquire_session(SEARCH_SSE, "k")

        assert backend.records == {}

    @pytest.mark.asyncio
    async def test_concurrent_writes_keep_other_keys(self):
        """Test that saving one key keeps records written for other keys."""
        backend = MemorySessionBackend({"other|k": record("external", expires_at=10**13)})
        store = SessionStore(FakeAcquirer(), backend=backend, clock=FakeClock())

        await store.acquire_session(SEARCH_SSE, "k")

        assert "other|k" in backend.records
        assert SessionStore.cache_key(SEARCH_SSE, "k") in backend.records


class TestLockLifetime:
    """Tests that per-key locks do not outlive their callers."""

    @pytest.mark.asyncio
    async def test_locks_released_after_concurrent_callers(self):
        store = SessionStore(FakeAcquirer(delay=0.02), clock=FakeClock())

        await asyncio.gather(
            *(store.acquire_session(SEARCH_SSE, "k") for _ in range(3)),
            store.acquire_session(READER_SSE, "k"),
        )

        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_lock_held_while_in_flight(self):
        store = SessionStore(FakeAcquirer(delay=0.2), clock=FakeClock())

        task = asyncio.ensure_future(store.acquire_session(SEARCH_SSE, "k"))
        await asyncio.sleep(0.05)
        assert SessionStore.cache_key(SEARCH_SSE, "k") in store._locks

        await task
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_locks_released_after_failure(self):
        store = SessionStore(FakeAcquirer(error=SessionAcquisitionError("no id")))

        for _ in range(3):
            with pytest.raises(SessionAcquisitionError):
                await store.acquire_session(SEARCH_SSE, "k")

        assert store._locks == {}


class TestClearing:
    """Tests for clear_sessions and clear_expired_sessions."""

    @pytest.mark.asyncio
    async def test_clear_sessions(self):
        backend = MemorySessionBackend({"a|k": record("s", expires_at=10**13)})
        store = SessionStore(FakeAcquirer(), backend=backend)

        await store.clear_sessions()

        assert backend.records == {}

    @pytest.mark.asyncio
    async def test_clear_expired_keeps_live(self):
        backend = MemorySessionBackend({
            "live|k": record("live", expires_at=2000),
            "dead|k": record("dead", expires_at=1000),
        })
        store = SessionStore(FakeAcquirer(), backend=backend, clock=FakeClock(1000))

        result = await store.clear_expired_sessions()

        assert result is None
        assert list(backend.records) == ["live|k"]


class TestFileSessionBackend:
    """Tests for the JSON file backend."""

    @pytest.mark.asyncio
    async def test_persists_between_stores(self, tmp_path):
        path = tmp_path / "sessions.json"
        first = SessionStore(FakeAcquirer(), backend=FileSessionBackend(path), clock=FakeClock())
        await first.acquire_session(SEARCH_SSE, "k")

        acquirer = FakeAcquirer()
        second = SessionStore(acquirer, backend=FileSessionBackend(path), clock=FakeClock())

        assert await second.acquire_session(SEARCH_SSE, "k") == "sess-1"
        assert acquirer.calls == []

    def test_file_format(self, tmp_path):
        path = tmp_path / "sessions.json"
        FileSessionBackend(path).save({"e|k": record("s1", expires_at=99)})

        data = json.loads(path.read_text())

        assert data == {
            "sessions": {
                "e|k": {"sessionId": "s1", "endpoint": SEARCH_SSE, "createdAt": 0, "expiresAt": 99},
            }
        }

    def test_missing_file(self, tmp_path):
        assert FileSessionBackend(tmp_path / "absent.json").load() == {}

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{ not json")
        assert FileSessionBackend(path).load() == {}

    def test_wrong_shape_is_empty(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"sessions": ["nope"]}))
        assert FileSessionBackend(path).load() == {}

    def test_invalid_records_are_skipped(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({
            "sessions": {
                "good|k": {"sessionId": "s", "endpoint": "e", "createdAt": 1, "expiresAt": 2},
                "bad|k": {"sessionId": "s"},
            }
        }))
        assert list(FileSessionBackend(path).load()) == ["good|k"]

    @pytest.mark.asyncio
    async def test_unwritable_location_still_returns_session(self, tmp_path):
        """Test that a persistence failure never fails the caller."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        backend = FileSessionBackend(blocker / "sessions.json")
        store = SessionStore(FakeAcquirer(), backend=backend, clock=FakeClock())

        assert await store.acquire_session(SEARCH_SSE, "k") == "sess-1"
