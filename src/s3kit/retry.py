"""Retry policies.

A retry policy is an async callable that takes a zero-argument coroutine
factory and returns its result, calling the factory again as it sees fit.
The client wraps each request attempt (sign, send, map errors) in one.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from s3kit.errors import S3ConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPolicy = Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]


async def no_retry(attempt: Callable[[], Awaitable[T]]) -> T:
    """Run the attempt exactly once."""
    return await attempt()


class ExponentialBackoff:
    """Retry with exponentially growing delays.

    Only exceptions in ``retry_on`` are retried; by default that is transport
    failures. Server errors and input errors propagate on the first attempt.

    Args:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound on any single delay.
        retry_on: Exception types that trigger another attempt.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 20.0,
        retry_on: tuple[type[BaseException], ...] = (S3ConnectionError,),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_on = retry_on

    def delay_for(self, attempt_number: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt_number - 1)))

    async def __call__(self, attempt: Callable[[], Awaitable[T]]) -> T:
        for attempt_number in range(1, self.max_attempts + 1):
            try:
                return await attempt()
            except self.retry_on as exc:
                if attempt_number == self.max_attempts:
                    raise
                delay = self.delay_for(attempt_number)
                logger.warning(
                    "Attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt_number,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")
