"""Tests for opt-in retry with exponential backoff."""

import pytest

from zsearch.bridge import retry as retry_module
from zsearch.bridge.errors import ToolCallError
from zsearch.bridge.retry import backoff_delay, with_retry


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    return recorded


class Flaky:
    def __init__(self, failures: int, error: Exception = None):
        self.failures = failures
        self.error = error or ToolCallError("flaky")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestBackoff:
    def test_doubles(self):
        assert [backoff_delay(n) for n in range(4)] == [0.1, 0.2, 0.4, 0.8]

    def test_capped(self):
        assert backoff_delay(10) == 2.0


class TestWithRetry:
    """Tests for with_retry()."""

    @pytest.mark.asyncio
    async def test_no_retries_by_default(self, sleeps):
        fn = Flaky(failures=1)

        with pytest.raises(ToolCallError):
            await with_retry(fn, retries=0)

        assert fn.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, sleeps):
        fn = Flaky(failures=2)

        assert await with_retry(fn, retries=2) == "ok"
        assert fn.calls == 3
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self, sleeps):
        fn = Flaky(failures=5)

        with pytest.raises(ToolCallError):
            await with_retry(fn, retries=2)

        assert fn.calls == 3

    @pytest.mark.asyncio
    async def test_unlisted_errors_are_not_retried(self, sleeps):
        fn = Flaky(failures=1, error=KeyError("x"))

        with pytest.raises(KeyError):
            await with_retry(fn, retries=3, retry_on=(ToolCallError,))

        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_give_up(self, sleeps):
        fn = Flaky(failures=3, error=ToolCallError("denied", status_code=401))

        with pytest.raises(ToolCallError):
            await with_retry(fn, retries=3, give_up=lambda exc: exc.is_auth_failure)

        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_last_attempt_error_is_the_one_raised(self, sleeps):
        errors = [ToolCallError("first"), ToolCallError("second"), ToolCallError("third")]

        async def fn():
            raise errors.pop(0)

        with pytest.raises(ToolCallError) as exc_info:
            await with_retry(fn, retries=2)

        assert exc_info.value.message == "third"
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_negative_retries_means_one_attempt(self, sleeps):
        fn = Flaky(failures=1)

        with pytest.raises(ToolCallError):
            await with_retry(fn, retries=-1)

        assert fn.calls == 1
