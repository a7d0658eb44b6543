"""
Interval scheduling for the auto-heal sweep.

Uses APScheduler as the timing engine. A sweep that is still running when
the next tick fires is not doubled up.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .auto_heal import ChurnAutoHealJob, get_auto_heal_job

logger = logging.getLogger("churnflow.jobs.scheduler")

JOB_ID = "churn_auto_heal"


class HealScheduler:
    """Wraps APScheduler AsyncIOScheduler for the auto-heal job."""

    def __init__(self, job: Optional[ChurnAutoHealJob] = None):
        self._job = job
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self.last_summary: Optional[dict] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job(self) -> ChurnAutoHealJob:
        if self._job is None:
            self._job = get_auto_heal_job()
        return self._job

    async def start(self, interval_minutes: Optional[int] = None) -> None:
        """Create the scheduler and register the sweep."""
        if self._running:
            logger.warning("Heal scheduler already running")
            return

        if interval_minutes is None:
            from ..config import settings

            interval_minutes = settings.auto_heal.interval_minutes

        self._scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            }
        )
        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=JOB_ID,
            name="Churn auto-heal",
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Heal scheduler started (every %d min)", interval_minutes)

    async def stop(self) -> None:
        """Shutdown the scheduler without waiting for an in-flight sweep."""
        if self._scheduler and self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Heal scheduler stopped")

    async def _tick(self) -> dict:
        self.last_summary = await self.job.run()
        return self.last_summary


_heal_scheduler: Optional[HealScheduler] = None


def get_heal_scheduler() -> HealScheduler:
    """Get the global heal scheduler."""
    global _heal_scheduler
    if _heal_scheduler is None:
        _heal_scheduler = HealScheduler()
    return _heal_scheduler
