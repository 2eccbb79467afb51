"""
Retention Sweeper
Periodically evicts terminal jobs older than the retention window.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from modelproxy.core.logging import EventRecorder, LoggingEventRecorder
from modelproxy.services.registry import JobRegistry
from modelproxy.services.status_cache import StatusCache

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Background task running ``JobRegistry.evict_expired`` every ``interval`` seconds."""

    def __init__(
        self,
        registry: JobRegistry,
        status_cache: Optional[StatusCache] = None,
        retention_seconds: float = 24 * 60 * 60,
        interval: float = 3600.0,
        events: Optional[EventRecorder] = None,
    ):
        self.registry = registry
        self.status_cache = status_cache
        self.retention_seconds = retention_seconds
        self.interval = interval
        self.events = events or LoggingEventRecorder()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self, now: Optional[datetime] = None) -> List[str]:
        """Evict expired jobs now and drop their cache entries."""
        evicted = self.registry.evict_expired(self.retention_seconds, now=now)
        if self.status_cache is not None:
            for job_id in evicted:
                await self.status_cache.delete(job_id)
        if evicted:
            self.events.record("jobs_evicted", count=len(evicted), remaining=len(self.registry))
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.exception(f"Retention sweep failed: {e}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="retention-sweeper")
        logger.info(f"Retention sweeper started (every {self.interval:g}s, keep {self.retention_seconds:g}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Retention sweeper stopped")


__all__ = ["RetentionSweeper"]
