"""Unit tests for retry with backoff."""

import pytest
from unittest.mock import AsyncMock
from microboot.utils.errors import retryable_error
from microboot.utils.retry import RetryPolicy, retry_with_backoff


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    async def test_first_attempt_succeeds(self):
        """No sleep when the operation succeeds immediately."""
        operation = AsyncMock(return_value="done")
        sleep = AsyncMock()
        result = await retry_with_backoff(operation, 3, 1.0, 10.0, sleep=sleep)
        assert result == "done"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_succeeds_after_failures(self):
        operation = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        sleep = AsyncMock()
        result = await retry_with_backoff(operation, 3, 1.0, 10.0, sleep=sleep)
        assert result == "ok"
        assert operation.await_count == 3
        assert sleep.await_count == 2

    async def test_raises_last_error_when_exhausted(self):
        """The operation runs max_retries + 1 times before giving up."""
        operation = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), RuntimeError("3")])
        sleep = AsyncMock()
        with pytest.raises(RuntimeError, match="3"):
            await retry_with_backoff(operation, 2, 1.0, 10.0, sleep=sleep)
        assert operation.await_count == 3
        assert sleep.await_count == 2

    async def test_zero_retries_runs_once(self):
        operation = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await retry_with_backoff(operation, 0, 1.0, 10.0, sleep=AsyncMock())
        assert operation.await_count == 1

    async def test_rejected_error_is_not_retried(self):
        operation = AsyncMock(side_effect=ValueError("bad input"))
        sleep = AsyncMock()
        with pytest.raises(ValueError):
            await retry_with_backoff(
                operation, 5, 1.0, 10.0, retry_on=lambda ex: False, sleep=sleep
            )
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_delay_grows_and_is_capped(self):
        operation = AsyncMock(side_effect=RuntimeError("boom"))
        sleep = AsyncMock()
        with pytest.raises(RuntimeError):
            await retry_with_backoff(operation, 6, 1.0, 5.0, sleep=sleep)
        delays = [call.args[0] for call in sleep.await_args_list]
        assert len(delays) == 6
        assert delays[0] == 1.0
        for previous, current in zip(delays, delays[1:]):
            assert current <= 5.0
            assert current <= previous * 2.0 + 1e-9
            assert current >= min(5.0, previous * 1.5) - 1e-9
        assert delays[-1] == 5.0


class TestRetryPolicy:
    """Tests for RetryPolicy.execute()."""

    async def test_retries_server_errors(self, api_error):
        operation = AsyncMock(side_effect=[api_error(500), api_error(503), "ok"])
        policy = RetryPolicy(max_retries=3, initial_delay=0, max_delay=0)
        assert await policy.execute(operation, retry_on=retryable_error) == "ok"
        assert operation.await_count == 3

    async def test_does_not_retry_forbidden(self, api_error):
        operation = AsyncMock(side_effect=api_error(403))
        policy = RetryPolicy(max_retries=3, initial_delay=0, max_delay=0)
        with pytest.raises(Exception):
            await policy.execute(operation, retry_on=retryable_error)
        assert operation.await_count == 1
