"""Unit tests for the retry helpers."""

from unittest.mock import AsyncMock

import pytest

from src.scaling.config import RetryPolicy
from src.scaling.exceptions import TransientStoreError
from src.scaling.retry import (
    backoff_delay,
    call_with_retry,
    retry_with_exponential_backoff,
)


def is_transient(error):
    return isinstance(error, TransientStoreError)


class TestBackoffDelay:
    def test_delay_is_power_of_base(self):
        assert backoff_delay(2, 1) == 2
        assert backoff_delay(2, 2) == 4
        assert backoff_delay(2, 3) == 8

    def test_zero_base_means_no_delay(self):
        assert backoff_delay(0, 1) == 0


class TestCallWithRetry:
    """Tests for call_with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        result = await call_with_retry(func, RetryPolicy(count=3, interval=2), is_transient, "a", sleep=sleep)

        assert result == "ok"
        func.assert_awaited_once_with("a")
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        func = AsyncMock(side_effect=[TransientStoreError("busy"), TransientStoreError("busy"), "ok"])
        sleep = AsyncMock()

        result = await call_with_retry(func, RetryPolicy(count=3, interval=2), is_transient, sleep=sleep)

        assert result == "ok"
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        """count retries means count + 1 attempts in total."""
        errors = [TransientStoreError(f"attempt {i}") for i in range(4)]
        func = AsyncMock(side_effect=errors)
        sleep = AsyncMock()

        with pytest.raises(TransientStoreError, match="attempt 3"):
            await call_with_retry(func, RetryPolicy(count=3, interval=2), is_transient, sleep=sleep)

        assert func.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_non_transient_error_is_raised_immediately(self):
        func = AsyncMock(side_effect=KeyError("bad"))
        sleep = AsyncMock()

        with pytest.raises(KeyError):
            await call_with_retry(func, RetryPolicy(count=3, interval=2), is_transient, sleep=sleep)

        func.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_classifier_never_retries(self):
        func = AsyncMock(side_effect=TransientStoreError("busy"))

        with pytest.raises(TransientStoreError):
            await call_with_retry(func, RetryPolicy(count=3, interval=0))

        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        func = AsyncMock(side_effect=TransientStoreError("busy"))
        sleep = AsyncMock()

        with pytest.raises(TransientStoreError):
            await call_with_retry(func, RetryPolicy(count=0, interval=2), is_transient, sleep=sleep)

        func.assert_awaited_once()
        sleep.assert_not_awaited()


class TestRetryDecorator:
    """Tests for retry_with_exponential_backoff."""

    @pytest.mark.asyncio
    async def test_decorated_function_is_retried(self):
        calls = []

        @retry_with_exponential_backoff(RetryPolicy(count=2, interval=0), is_transient)
        async def flaky(value):
            calls.append(value)
            if len(calls) < 3:
                raise TransientStoreError("busy")
            return value * 2

        assert await flaky(21) == 42
        assert calls == [21, 21, 21]
        assert flaky.__name__ == "flaky"
