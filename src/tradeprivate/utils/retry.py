"""Retry with exponential backoff, and a circuit breaker for ledger calls.

Only transport failures (``NetworkError``) are retried. Replays, timing
violations, validation and crypto failures propagate on the first attempt,
and nonce or nullifier generation must never be placed inside a retried
operation: a retry resubmits identical commitments and nullifiers.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tradeprivate.exceptions import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters: delay = min(initial_delay * factor**attempt, max_delay)."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)


def is_retryable(error: BaseException) -> bool:
    """Return True if the error is a transient transport failure."""
    return isinstance(error, NetworkError)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """
    Await ``operation()`` and retry it on retryable errors.

    Args:
        operation: Zero-argument coroutine factory. Called once per attempt.
        policy: Backoff parameters (defaults to 3 retries, 1s..10s)
        description: Label used in log messages
        should_retry: Predicate deciding whether an error is retryable

    Returns:
        The operation's result

    Raises:
        The last error once retries are exhausted, or any non-retryable error
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not should_retry(e) or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.2fs",
                description, e, attempt, policy.max_retries, delay,
            )
            await asyncio.sleep(delay)


class BreakerState(str, enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling a failing dependency until a cool-down has passed.

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects calls with ``NetworkError`` until ``reset_timeout`` seconds
    have elapsed, then lets one trial call through in HALF_OPEN. A successful
    trial closes the breaker; a failed one reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self._opened_at = 0.0

    def _before_call(self) -> None:
        if self.state is BreakerState.OPEN:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self.state = BreakerState.HALF_OPEN
                logger.info("Circuit breaker half-open, probing")
            else:
                raise NetworkError("Circuit breaker is open")

    def record_success(self) -> None:
        if self.state is not BreakerState.CLOSED:
            logger.info("Circuit breaker closed")
        self.state = BreakerState.CLOSED
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state is BreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self._opened_at = self._clock()
            logger.error("Circuit breaker opened after %d failures", self.failure_count)

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation()`` through the breaker. Only NetworkError counts as a failure."""
        self._before_call()
        try:
            result = await operation()
        except NetworkError:
            self.record_failure()
            raise
        self.record_success()
        return result
