"""APScheduler wrapper providing fixed-period scheduling.

Each task runs on a fixed period aligned to wall-clock multiples of that
period (a 5 minute task fires at :00, :05, :10 ...), independent of any
calendar or timezone rules.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def aligned_anchor(period: timedelta, now: datetime | None = None) -> datetime:
    """Return the most recent epoch-aligned multiple of ``period`` at or before ``now``."""
    if period <= timedelta(0):
        raise ValueError(f"Period must be positive, got {period}")
    if period % timedelta(seconds=1):
        raise ValueError(f"Period must be a whole number of seconds, got {period}")
    now = now or datetime.now(timezone.utc)
    return _EPOCH + ((now - _EPOCH) // period) * period


class ScheduleHandle:
    """Reference to one periodic task registered with a PeriodicScheduler."""

    def __init__(
        self, scheduler: AsyncIOScheduler, job_id: str, period: timedelta
    ) -> None:
        self._scheduler = scheduler
        self.job_id = job_id
        self.period = period
        self._cancelled = False

    def _job(self):
        if self._cancelled:
            return None
        return self._scheduler.get_job(self.job_id)

    @property
    def active(self) -> bool:
        return self._job() is not None

    def next_fire_time(self) -> datetime | None:
        """Get the next time this task fires, or None once cancelled."""
        job = self._job()
        if job is None:
            return None
        return job.next_run_time

    def fire_times(self, count: int) -> list[datetime]:
        """Get the next ``count`` fire times, derived from the trigger.

        Args:
            count: Number of fire times to return

        Returns:
            Ascending list of fire times, empty when cancelled
        """
        job = self._job()
        if job is None:
            return []

        times: list[datetime] = []
        fire_time = job.next_run_time
        while fire_time is not None and len(times) < count:
            times.append(fire_time)
            fire_time = job.trigger.get_next_fire_time(fire_time, fire_time)
        return times

    def cancel(self) -> None:
        """Remove the task from the scheduler. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._scheduler.remove_job(self.job_id)
            logger.info(f"Removed scheduled job: {self.job_id}")
        except JobLookupError:
            logger.debug(f"Scheduled job already removed: {self.job_id}")


class PeriodicScheduler:
    """Scheduler for fixed-period tasks on the running asyncio event loop.

    Uses an in-memory APScheduler job store; the orchestrator's enabled flag,
    not the job store, is what survives restarts.
    """

    def __init__(self, misfire_grace_seconds: int = 30) -> None:
        """Initialize the scheduler.

        Args:
            misfire_grace_seconds: How late a fire may still run
        """
        self.misfire_grace_seconds = misfire_grace_seconds
        self._scheduler: AsyncIOScheduler | None = None

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Only one instance per job
            "misfire_grace_time": self.misfire_grace_seconds,
        }
        return AsyncIOScheduler(job_defaults=job_defaults, timezone="UTC")

    def _ensure_started(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = self._create_scheduler()
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Periodic scheduler started")
        return self._scheduler

    @property
    def is_running(self) -> bool:
        """Check if the underlying scheduler is running."""
        return self._scheduler is not None and self._scheduler.running

    def schedule(
        self,
        job_id: str,
        period: timedelta,
        on_fire: Callable[[], Awaitable[Any]],
    ) -> ScheduleHandle:
        """Register a task that fires every ``period``.

        Args:
            job_id: Unique identifier for the task, replaces any existing one
            period: Fixed interval between fires
            on_fire: Coroutine function invoked on every fire

        Returns:
            Handle for inspecting and cancelling the task
        """
        start_date = aligned_anchor(period)
        scheduler = self._ensure_started()
        trigger = IntervalTrigger(
            seconds=int(period.total_seconds()),
            start_date=start_date,
            timezone="UTC",
        )
        scheduler.add_job(
            on_fire,
            trigger=trigger,
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        logger.info(f"Added scheduled job: {job_id} every {period}")
        return ScheduleHandle(scheduler, job_id, period)

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Periodic scheduler shutdown")
        self._scheduler = None
