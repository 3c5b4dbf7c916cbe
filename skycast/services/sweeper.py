"""
CacheSweeper - Periodic removal of expired cache entries.

Runs LRUCache.cleanup on an APScheduler interval job so expired entries do
not linger until someone touches them. The job is a coroutine, so it runs
on the event loop alongside every other cache access.
"""

import asyncio
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from skycast.services.cache import LRUCache
from skycast.utils import logged_job


class CacheSweeper:
    """Interval scheduler for cache cleanup."""

    JOB_ID = "cache_sweep_job"

    def __init__(
        self,
        cache: LRUCache,
        interval: timedelta = timedelta(seconds=60),
    ):
        self.cache = cache
        self.interval = interval
        self.scheduler: AsyncIOScheduler | None = None
        self._is_running = False

    @logged_job
    async def sweep_job(self) -> int:
        """Sweep expired entries."""
        removed = self.cache.cleanup()
        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries")
        return removed

    def start(self) -> None:
        """
        Start the sweep schedule.

        Must be called from a running event loop.
        """
        if self._is_running:
            logger.warning("Cache sweeper is already running")
            return

        self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            seconds=self.interval.total_seconds(),
            id=self.JOB_ID,
            name="Cache Sweeper",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Cache sweeper started: sweeping every {self.interval.total_seconds()}s"
        )

    def stop(self) -> None:
        """Stop the sweep schedule."""
        if not self._is_running:
            return

        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        self._is_running = False
        logger.info("Cache sweeper stopped")

    def is_running(self) -> bool:
        """Check whether the sweep schedule is active."""
        return self._is_running

    async def sweep_now(self) -> int:
        """Run one sweep immediately (manual trigger)."""
        return await self.sweep_job()
