"""Rate limiting and retry helpers for the hosted vision engine.

The limiter keeps a sliding 60-second window of call timestamps and queues
callers in arrival order. Retries use tenacity with exponential backoff and
jitter, restricted to an allow-list of transient failures.

Based on tenacity documentation:
https://tenacity.readthedocs.io/
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import openai
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503})

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    httpx.TimeoutException,
    httpx.ConnectError,
    ConnectionResetError,
    TimeoutError,
)


class RateLimiter:
    """Sliding-window limiter shared by every caller of one provider quota.

    Callers wait on a FIFO lock, so the oldest waiter is admitted first and
    the trailing window never holds more than ``max_requests`` timestamps.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def wait_for_slot(self) -> None:
        """Block until a slot is free in the trailing window, then claim it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    logger.debug(
                        f"Rate limiter: {len(self._timestamps)}/{self.max_requests} "
                        "requests in window"
                    )
                    return

                wait_time = self._timestamps[0] + self.window_seconds - now
                logger.info(
                    f"Rate limit reached ({len(self._timestamps)}/{self.max_requests}). "
                    f"Waiting {wait_time:.1f}s..."
                )
                await self._sleep(wait_time)

    def get_status(self) -> dict[str, int]:
        """Current window usage.

        Returns:
            Dict with currentRequests, maxRequests and available slots
        """
        self._evict(self._clock())
        current = len(self._timestamps)
        return {
            "currentRequests": current,
            "maxRequests": self.max_requests,
            "available": self.max_requests - current,
        }


class RetryOptions(BaseModel):
    """Backoff policy for transient provider errors.

    Attributes:
        max_retries: Total attempts before the last error is re-raised
        initial_delay: Delay before the second attempt (seconds)
        max_delay: Upper bound for any single delay (seconds)
        backoff_factor: Multiplier applied per attempt
        jitter: Maximum random seconds added to each delay
        retryable_exceptions: Exception classes treated as transient
        retryable_status_codes: HTTP statuses treated as transient
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_retries: int = Field(default=3, gt=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    jitter: float = Field(default=1.0, ge=0)
    retryable_exceptions: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES


def _status_code(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException, options: RetryOptions) -> bool:
    """Check whether an error belongs to the transient allow-list."""
    if isinstance(error, options.retryable_exceptions):
        return True
    return _status_code(error) in options.retryable_status_codes


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the retry budget is spent.

    Delay before attempt n+1 is min(initial * factor^(n-1) + jitter, max_delay).
    Non-retryable errors propagate on first occurrence.

    Args:
        fn: Zero-argument coroutine factory
        options: Backoff policy (defaults to RetryOptions())
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Whatever ``fn`` returns

    Raises:
        Exception: The last error once attempts are exhausted, or the first
            non-retryable error
    """
    opts = options or RetryOptions()

    def _log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"Attempt {state.attempt_number}/{opts.max_retries} failed: {error}. "
            f"Retrying in {delay:.1f}s..."
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception(lambda e: is_retryable(e, opts)),
        wait=wait_exponential_jitter(
            initial=opts.initial_delay,
            max=opts.max_delay,
            exp_base=opts.backoff_factor,
            jitter=opts.jitter,
        ),
        stop=stop_after_attempt(opts.max_retries),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover
