"""Unit tests for the sliding-window rate limiter and retry helper.

The limiter is driven by a simulated clock whose sleep advances time, so the
tests never wait in real time.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from payverify.shared.ratelimit import (
    RateLimiter,
    RetryOptions,
    is_retryable,
    retry_with_backoff,
)


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += max(seconds, 0.0)
        await asyncio.sleep(0)


class StatusError(Exception):
    """Error carrying an HTTP status, like provider SDK exceptions."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(max_requests_per_minute=3, clock=clock, sleep=clock.sleep)


class TestRateLimiter:
    """Test RateLimiter admission behaviour."""

    def test_rejects_non_positive_limit(self) -> None:
        """A zero limit is a configuration error."""
        with pytest.raises(ValueError):
            RateLimiter(max_requests_per_minute=0)

    @pytest.mark.asyncio
    async def test_admits_up_to_limit_without_waiting(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        """The first N callers should be admitted immediately."""
        for _ in range(3):
            await limiter.wait_for_slot()

        assert clock.now == 0.0
        assert limiter.get_status() == {"currentRequests": 3, "maxRequests": 3, "available": 0}

    @pytest.mark.asyncio
    async def test_waits_for_oldest_timestamp_to_expire(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        """Caller N+1 should wait until the oldest slot leaves the window."""
        for _ in range(3):
            await limiter.wait_for_slot()

        await limiter.wait_for_slot()

        assert clock.now == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_never_exceeds_limit_under_concurrent_load(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        """No trailing 60s window should ever hold more than N admissions."""
        admitted: list[tuple[int, float]] = []

        async def caller(index: int) -> None:
            await limiter.wait_for_slot()
            admitted.append((index, clock.now))

        await asyncio.gather(*(caller(i) for i in range(10)))

        times = [t for _, t in admitted]
        for t in times:
            in_window = [other for other in times if t - 60.0 < other <= t]
            assert len(in_window) <= 3
        assert len(admitted) == 10

    @pytest.mark.asyncio
    async def test_admits_callers_in_arrival_order(self, limiter: RateLimiter) -> None:
        """Waiting callers should be served FIFO."""
        order: list[int] = []

        async def caller(index: int) -> None:
            await limiter.wait_for_slot()
            order.append(index)

        await asyncio.gather(*(caller(i) for i in range(7)))

        assert order == list(range(7))

    @pytest.mark.asyncio
    async def test_status_frees_slots_after_window(
        self, limiter: RateLimiter, clock: FakeClock
    ) -> None:
        """Slots older than the window should no longer count."""
        await limiter.wait_for_slot()
        await limiter.wait_for_slot()
        assert limiter.get_status()["available"] == 1

        clock.now += 61
        assert limiter.get_status() == {"currentRequests": 0, "maxRequests": 3, "available": 3}


class TestIsRetryable:
    """Test the transient-error allow-list."""

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            ConnectionResetError(),
            TimeoutError(),
            StatusError(429),
            StatusError(503),
        ],
    )
    def test_transient_errors(self, error: Exception) -> None:
        """Network failures and throttling statuses should be retried."""
        assert is_retryable(error, RetryOptions()) is True

    def test_openai_timeout(self) -> None:
        """OpenAI SDK timeouts should be retried."""
        error = openai.APITimeoutError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        assert is_retryable(error, RetryOptions()) is True

    @pytest.mark.parametrize("error", [ValueError("bad"), StatusError(400), StatusError(401)])
    def test_permanent_errors(self, error: Exception) -> None:
        """Client errors should not be retried."""
        assert is_retryable(error, RetryOptions()) is False


class TestRetryWithBackoff:
    """Test retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self) -> None:
        """Should retry transient errors with exponential delays."""
        fn = AsyncMock(side_effect=[httpx.ConnectError("down"), StatusError(502), "ok"])
        sleep = AsyncMock()
        options = RetryOptions(max_retries=3, initial_delay=1.0, backoff_factor=2.0, jitter=0)

        result = await retry_with_backoff(fn, options, sleep=sleep)

        assert result == "ok"
        assert fn.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self) -> None:
        """Non-retryable errors should not be retried."""
        fn = AsyncMock(side_effect=ValueError("bad request"))
        sleep = AsyncMock()

        with pytest.raises(ValueError, match="bad request"):
            await retry_with_backoff(fn, RetryOptions(jitter=0), sleep=sleep)

        assert fn.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self) -> None:
        """Should give up after max_retries attempts."""
        fn = AsyncMock(side_effect=TimeoutError("still slow"))
        sleep = AsyncMock()

        with pytest.raises(TimeoutError, match="still slow"):
            await retry_with_backoff(fn, RetryOptions(max_retries=3, jitter=0), sleep=sleep)

        assert fn.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_delay_capped_at_max_delay(self) -> None:
        """No single delay should exceed max_delay."""
        fn = AsyncMock(side_effect=[TimeoutError(), TimeoutError(), "ok"])
        sleep = AsyncMock()
        options = RetryOptions(
            max_retries=3, initial_delay=10.0, backoff_factor=10.0, max_delay=15.0, jitter=0
        )

        await retry_with_backoff(fn, options, sleep=sleep)

        assert [c.args[0] for c in sleep.await_args_list] == [10.0, 15.0]
