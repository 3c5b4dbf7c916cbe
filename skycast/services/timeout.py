"""
TimeoutGuard - Races an async operation against a deadline.

When the deadline wins, the operation is cancelled, so nothing it would
have done afterwards can reach shared state. When the operation wins, the
timer is dropped with it.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from skycast.services.errors import RequestTimeoutError

T = TypeVar("T")


class TimeoutGuard:
    """
    Per-call timeout for a single service.

    Usage:
        guard = TimeoutGuard("openweather", timeout=10.0)
        data = await guard.guard(lambda: fetch("paris"))
    """

    def __init__(self, service_id: str, timeout: float = 10.0):
        self.service_id = service_id
        self.timeout = timeout

    async def guard(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """
        Await operation with a deadline.

        Raises:
            RequestTimeoutError: If the deadline passes first.
        """
        limit = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(operation(), timeout=limit)
        except asyncio.TimeoutError as e:
            logger.warning(f"Request to '{self.service_id}' timed out after {limit}s")
            raise RequestTimeoutError(self.service_id, limit) from e
