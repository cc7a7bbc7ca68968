"""Bounded retry with failure classification.

Every stage of the swap pipeline that tolerates remote failures runs its
attempts through a RetryPolicy:

    policy = RetryPolicy(interval=15, timeout=33 * 60, retry_on=is_liquidity_error)
    outcome = await policy.run(place_fee_order)
    if outcome.succeeded:
        order = outcome.value

The policy never raises for a failed attempt. It returns a RetryOutcome
tagged with why it stopped, so the caller decides whether to abort, retry
at a higher level, or proceed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStatus(str, Enum):
    """Why a retry loop stopped."""

    SUCCEEDED = "succeeded"
    REJECTED = "rejected"  # failure classified as non-retryable
    DEADLINE_EXCEEDED = "deadline_exceeded"


@dataclass
class RetryOutcome(Generic[T]):
    """Tagged result of a retry loop."""

    status: RetryStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == RetryStatus.SUCCEEDED

    @property
    def timed_out(self) -> bool:
        return self.status == RetryStatus.DEADLINE_EXCEEDED


def _retry_everything(error: Exception) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async attempt at a fixed interval until an absolute deadline.

    Args:
        interval: Seconds to sleep between attempts
        timeout: Seconds from the first attempt after which no new attempt starts
        retry_on: Predicate deciding whether a failure is retryable
        max_attempts: Optional hard cap on attempts
        name: Label used in log lines
    """

    interval: float
    timeout: float
    retry_on: Callable[[Exception], bool] = _retry_everything
    max_attempts: Optional[int] = None
    name: str = "operation"

    async def run(
        self,
        attempt: Callable[[], Awaitable[T]],
        *,
        deadline: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> RetryOutcome[T]:
        """Run attempts until success, a non-retryable failure or the deadline.

        Args:
            attempt: Zero-argument coroutine function performing one try
            deadline: Optional absolute clock() value that caps the policy's own deadline
            sleep: Sleep coroutine (injected for tests)
            clock: Monotonic clock (injected for tests)

        Returns:
            RetryOutcome describing the last attempt
        """
        started = clock()
        own_deadline = started + self.timeout
        if deadline is not None:
            own_deadline = min(own_deadline, deadline)

        attempts = 0
        while True:
            attempts += 1
            try:
                value = await attempt()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.retry_on(e):
                    logger.warning(f"{self.name}: attempt {attempts} failed permanently: {e}")
                    return RetryOutcome(
                        status=RetryStatus.REJECTED,
                        error=e,
                        attempts=attempts,
                        elapsed=clock() - started,
                    )

                now = clock()
                out_of_attempts = self.max_attempts is not None and attempts >= self.max_attempts
                if out_of_attempts or now + self.interval >= own_deadline:
                    logger.error(
                        f"{self.name}: giving up after {attempts} attempts "
                        f"({now - started:.0f}s): {e}"
                    )
                    return RetryOutcome(
                        status=RetryStatus.DEADLINE_EXCEEDED,
                        error=e,
                        attempts=attempts,
                        elapsed=now - started,
                    )

                logger.warning(
                    f"{self.name}: attempt {attempts} failed ({e}); "
                    f"retrying in {self.interval:.0f}s"
                )
                await sleep(self.interval)
                continue

            if attempts > 1:
                logger.info(f"{self.name}: succeeded on attempt {attempts}")
            return RetryOutcome(
                status=RetryStatus.SUCCEEDED,
                value=value,
                attempts=attempts,
                elapsed=clock() - started,
            )
