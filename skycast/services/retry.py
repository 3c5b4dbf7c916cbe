"""
RetryExecutor - Bounded retries with exponential backoff and jitter.

The wait before attempt i+1 is base_delay * 2**i plus a random jitter drawn
fresh for every wait, so concurrent callers retrying the same dependency
spread out instead of retrying in lockstep.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from skycast.services.errors import is_retryable

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry executor."""

    max_retries: int = 3  # Attempts after the first one
    base_delay: float = 1.0  # Seconds, doubled per attempt
    max_jitter: float = 1.0  # Seconds of random jitter added per wait


class RetryExecutor:
    """
    Retries a fallible async operation.

    Usage:
        retry = RetryExecutor(RetryConfig(max_retries=3))
        data = await retry.execute(lambda: fetch("paris"))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.config = config or RetryConfig()
        if self.config.max_retries < 0:
            raise ValueError(
                f"max_retries must be >= 0, got {self.config.max_retries}"
            )
        self._retryable = retryable
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based attempt failed."""
        jitter = self._rng.uniform(0, self.config.max_jitter)
        return self.config.base_delay * (2**attempt) + jitter

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation, retrying retryable failures.

        The last failure is re-raised unchanged once attempts run out.
        """
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt == max_retries or not self._retryable(e):
                    raise

                delay = self.backoff_delay(attempt)
                logger.debug(
                    f"Attempt {attempt + 1}/{max_retries + 1} failed "
                    f"({type(e).__name__}: {e}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        # range() above always runs at least once and every path returns or raises
        raise AssertionError("unreachable")
