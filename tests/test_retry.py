"""Tests for the retry decorator."""

from unittest.mock import AsyncMock, patch

import pytest

from flakeboard.retry import backoff_delay, retry_with_backoff

TRANSIENT = (ConnectionError, TimeoutError)


def as_function(mock: AsyncMock):
    """Wrap a mock in a real coroutine function so it has a __name__."""

    async def send(*args, **kwargs):
        return await mock(*args, **kwargs)

    return send


class TestRetryOnException:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        func = AsyncMock(return_value="ok")

        retry = retry_with_backoff(retryable_exceptions=TRANSIENT)
        result = await retry(as_function(func))()

        assert result == "ok"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[ConnectionError("reset"), TimeoutError("slow"), "ok"])

        retry = retry_with_backoff(retryable_exceptions=TRANSIENT, base_delay=0)
        result = await retry(as_function(func))()

        assert result == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_raises_after_max_retries(self, captured_logs):
        func = AsyncMock(side_effect=ConnectionError("reset"))

        retry = retry_with_backoff(retryable_exceptions=TRANSIENT, max_retries=2, base_delay=0)
        with pytest.raises(ConnectionError):
            await retry(as_function(func))()

        assert func.await_count == 3
        events = [log["event"] for log in captured_logs]
        assert events == ["retry_attempt", "retry_attempt", "retry_exhausted"]

    @pytest.mark.asyncio
    async def test_unlisted_exception_propagates_immediately(self):
        func = AsyncMock(side_effect=OSError("disk full"))

        retry = retry_with_backoff(retryable_exceptions=TRANSIENT, base_delay=0)
        with pytest.raises(OSError):
            await retry(as_function(func))()

        assert func.await_count == 1

    def test_retryable_exceptions_must_be_named(self):
        with pytest.raises(TypeError):
            retry_with_backoff()


class TestRetryOnResult:
    @pytest.mark.asyncio
    async def test_transient_result_is_retried(self):
        func = AsyncMock(side_effect=[503, 502, 200])

        retry = retry_with_backoff(
            retryable_exceptions=TRANSIENT, retry_on_result=lambda s: s >= 500, base_delay=0
        )

        assert await retry(as_function(func))() == 200
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_last_result_is_returned_when_retries_run_out(self, captured_logs):
        func = AsyncMock(return_value=503)

        retry = retry_with_backoff(
            retryable_exceptions=TRANSIENT,
            retry_on_result=lambda s: s >= 500,
            max_retries=1,
            base_delay=0,
        )

        assert await retry(as_function(func))() == 503
        assert func.await_count == 2
        assert captured_logs[-1]["event"] == "retry_exhausted"
        assert captured_logs[-1]["result"] == "503"

    @pytest.mark.asyncio
    async def test_exceptions_and_results_share_the_retry_budget(self):
        func = AsyncMock(side_effect=[ConnectionError("reset"), 503, 200])

        retry = retry_with_backoff(
            retryable_exceptions=TRANSIENT,
            retry_on_result=lambda s: s >= 500,
            max_retries=1,
            base_delay=0,
        )

        assert await retry(as_function(func))() == 503
        assert func.await_count == 2


class TestBackoffDelay:
    @pytest.mark.asyncio
    async def test_delay_is_exponential_and_capped(self):
        func = AsyncMock(side_effect=[TimeoutError(), TimeoutError(), TimeoutError(), "ok"])

        with patch("flakeboard.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            retry = retry_with_backoff(
                retryable_exceptions=TRANSIENT, base_delay=1.0, max_delay=3.0, jitter=False
            )
            await retry(as_function(func))()

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 3.0]

    @pytest.mark.parametrize("attempt", [0, 1, 4])
    def test_jitter_scales_delay_between_half_and_one_and_a_half(self, attempt):
        delay = backoff_delay(attempt, base_delay=2.0, max_delay=10.0, jitter=True)
        unjittered = min(2.0 * 2**attempt, 10.0)

        assert 0.5 * unjittered <= delay < 1.5 * unjittered
