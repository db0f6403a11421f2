"""Housekeeping scheduler.

Periodically deletes expired rate-limit windows and history entries past
their retention period. Runs as an asyncio task with no external scheduler
dependency.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta

from .history import HistoryStore
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_MINUTES = 15
RETRY_AFTER_FAILURE_SECONDS = 60


class HousekeepingScheduler:
    """Sweeps stale rate-limit and history rows on a fixed interval."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        history: HistoryStore,
        retention: timedelta = timedelta(days=30),
        interval_minutes: int = DEFAULT_SWEEP_INTERVAL_MINUTES,
    ):
        self._rate_limiter = rate_limiter
        self._history = history
        self._retention = retention
        self._interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Launch the sweep loop. Calling start on a running scheduler does nothing."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop(), name="site-quality-housekeeping")
        logger.info("Housekeeping every %d minutes, history retention %s", self._interval_seconds // 60, self._retention)

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Housekeeping stopped")

    async def sweep(self) -> dict[str, int]:
        """Run one sweep now and report what was removed."""
        windows = await self._rate_limiter.purge_expired()
        entries = await self._history.purge_older_than(self._retention)
        logger.debug("Sweep removed %d rate-limit windows and %d history entries", windows, entries)
        return {"rate_limit_windows": windows, "history_entries": entries}

    async def _run_loop(self):
        delay = 0
        while True:
            await asyncio.sleep(delay)
            try:
                await self.sweep()
                delay = self._interval_seconds
            except Exception as exc:
                logger.error("Housekeeping sweep failed: %s", exc, exc_info=True)
                delay = RETRY_AFTER_FAILURE_SECONDS
