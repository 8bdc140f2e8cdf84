"""Sync orchestrator driving the sales and registration posting tasks.

Two independent periodic tasks are owned by the orchestrator:

- Sales sync (every 5 minutes): fetch and dedup new sales, then hand them to
  the posting pipeline when posting is permitted.
- Registration sync (every minute): post a bounded batch of registrations
  that have not been published yet.

Back-to-back sales failures are counted; once the count reaches
``max_consecutive_errors`` the orchestrator stops itself and stays stopped
until an operator resets the counter and starts it again. Registration
failures are logged only and never touch the counter.

The enabled flag is persisted so a restarted process resumes in the state
an operator last left it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, TypeVar

import config

from .collaborators import PostingGate, PostingPipeline, SourceProcessor, StateStore
from .errors import CollaboratorUnavailableError
from .models import (
    FailureStats,
    ManualSyncResult,
    OutcomeTally,
    PostingSettings,
    PostOutcome,
    RegistrationRunStats,
    RunStats,
    SalesRunStats,
    StatusSnapshot,
    TaskSlot,
    UpcomingRuns,
)
from .scheduler import PeriodicScheduler, ScheduleHandle

logger = logging.getLogger(__name__)

T = TypeVar("T")

SALES_TASK = "sales"
REGISTRATION_TASK = "registrations"

SALES_JOB_ID = "sales_sync"
REGISTRATION_JOB_ID = "registration_sync"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_enabled_flag(value: str | None) -> bool:
    """Interpret a persisted enabled flag; anything but "true" is disabled."""
    if value is None:
        return False
    return value.strip().lower() == "true"


class SyncOrchestrator:
    """Owns the two periodic sync tasks and the consecutive-error trip-wire.

    All state mutation happens on the event loop that runs the scheduled
    tasks, so no lock is taken around the counters.
    """

    def __init__(
        self,
        source_processor: SourceProcessor,
        posting_pipeline: PostingPipeline,
        state_store: StateStore,
        posting_gate: PostingGate,
        scheduler: PeriodicScheduler | None = None,
        *,
        sales_interval: timedelta | None = None,
        registration_interval: timedelta | None = None,
        max_consecutive_errors: int | None = None,
        registration_batch_size: int | None = None,
        call_timeout: float | None = None,
        state_key: str | None = None,
    ) -> None:
        """Initialize the orchestrator in the stopped state.

        Args:
            source_processor: Fetches and dedups new sales
            posting_pipeline: Publishes records and reports per-record outcomes
            state_store: Persists the enabled flag and serves registrations
            posting_gate: Global auto-posting kill-switch
            scheduler: Periodic scheduler, created if omitted
            sales_interval: Sales task period
            registration_interval: Registration task period
            max_consecutive_errors: Sales failures that trip the stop
            registration_batch_size: Registrations fetched per run
            call_timeout: Seconds allowed per collaborator call, 0 for none
            state_key: Key of the persisted enabled flag
        """
        self.source_processor = source_processor
        self.posting_pipeline = posting_pipeline
        self.state_store = state_store
        self.posting_gate = posting_gate
        self.scheduler = scheduler or PeriodicScheduler()

        self.sales_interval = sales_interval or timedelta(
            minutes=config.SALES_SYNC_INTERVAL_MINUTES
        )
        self.registration_interval = registration_interval or timedelta(
            minutes=config.REGISTRATION_SYNC_INTERVAL_MINUTES
        )
        self.max_consecutive_errors = (
            max_consecutive_errors
            if max_consecutive_errors is not None
            else config.MAX_CONSECUTIVE_ERRORS
        )
        self.registration_batch_size = (
            registration_batch_size
            if registration_batch_size is not None
            else config.REGISTRATION_BATCH_SIZE
        )
        self.call_timeout = (
            call_timeout if call_timeout is not None else config.COLLABORATOR_TIMEOUT_SECONDS
        )
        self.state_key = state_key or config.ORCHESTRATOR_STATE_KEY

        self.running = False
        self.consecutive_errors = 0
        self.last_run_time: datetime | None = None
        self.last_run_stats: RunStats | None = None
        self.last_registration_stats: RunStats | None = None

        self._sales_handle: ScheduleHandle | None = None
        self._registration_handle: ScheduleHandle | None = None
        self._sales_slot = TaskSlot(SALES_TASK)
        self._registration_slot = TaskSlot(REGISTRATION_TASK)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize_from_store(self) -> None:
        """Restore the enabled state persisted by a previous process."""
        try:
            saved_state = self.state_store.get_value(self.state_key)
        except Exception as e:
            logger.warning(f"Could not load orchestrator state: {e}")
            logger.info("Orchestrator will remain stopped until manually started")
            return

        if parse_enabled_flag(saved_state):
            logger.info("Orchestrator was enabled, starting automatically...")
            self.start()
        else:
            logger.info("Orchestrator is disabled - use the dashboard to start it")

    def start(self) -> None:
        """Create both periodic tasks and mark the orchestrator running.

        Any existing tasks are stopped first, so repeated calls never leave
        duplicate timers behind.
        """
        if self._sales_handle or self._registration_handle:
            logger.warning("Orchestrator already running, stopping existing tasks first")
            self.stop()

        self._sales_handle = self.scheduler.schedule(
            SALES_JOB_ID, self.sales_interval, self.run_sales_sync
        )
        self._registration_handle = self.scheduler.schedule(
            REGISTRATION_JOB_ID, self.registration_interval, self.run_registration_sync
        )
        self.running = True

        self._save_enabled_state(True)

        logger.info(
            f"Orchestrator started - sales: every {self.sales_interval}, "
            f"registrations: every {self.registration_interval}"
        )
        logger.info(f"Next sales run: {self._sales_handle.next_fire_time()}")
        logger.info(
            f"Next registration run: {self._registration_handle.next_fire_time()}"
        )

    def stop(self) -> bool:
        """Cancel both tasks if present. A no-op when nothing is scheduled.

        Returns:
            True if any task was cancelled
        """
        was_running = self._discard_handles()

        if was_running:
            self.running = False
            self._save_enabled_state(False)
            logger.info("Orchestrator stopped - sales and registration processing halted")
        else:
            logger.info("Orchestrator was not running")
        return was_running

    def force_stop(self) -> None:
        """Unconditionally mark stopped, drop both tasks and persist disabled."""
        self.running = False
        self._discard_handles()
        self._save_enabled_state(False)
        logger.info("Orchestrator force stopped - all activity halted")

    def shutdown(self) -> None:
        """Release the scheduler on process exit without touching the persisted flag."""
        self.running = False
        self._discard_handles()
        self.scheduler.shutdown(wait=False)

    def reset_error_counter(self) -> None:
        """Clear the consecutive-error count; does not restart tasks."""
        self.consecutive_errors = 0
        logger.info("Orchestrator error counter reset")

    def is_healthy(self) -> bool:
        return self.running and self.consecutive_errors < self.max_consecutive_errors

    def _discard_handles(self) -> bool:
        had_handle = False
        if self._sales_handle:
            self._sales_handle.cancel()
            self._sales_handle = None
            had_handle = True
        if self._registration_handle:
            self._registration_handle.cancel()
            self._registration_handle = None
            had_handle = True
        return had_handle

    def _save_enabled_state(self, enabled: bool) -> None:
        try:
            self.state_store.set_value(self.state_key, "true" if enabled else "false")
            logger.debug(f"Orchestrator state saved: {'enabled' if enabled else 'disabled'}")
        except Exception as e:
            logger.warning(f"Could not save orchestrator state: {e}")

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def _call(self, task: str, description: str, awaitable: Awaitable[T]) -> T:
        """Await a collaborator call, bounded by the configured timeout."""
        if not self.call_timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorUnavailableError(
                f"{description} timed out after {self.call_timeout}s", task=task
            ) from e

    def _sales_posting_permitted(self, settings: PostingSettings) -> bool:
        return self.posting_gate.is_auto_posting_enabled() and settings.enabled

    def _registration_posting_permitted(self, settings: PostingSettings) -> bool:
        return (
            self.posting_gate.is_auto_posting_enabled()
            and settings.enabled
            and settings.registrations_enabled
        )

    async def run_sales_sync(self, *, force: bool = False) -> RunStats | None:
        """Run one sales sync.

        Args:
            force: Run even while the orchestrator is stopped

        Returns:
            Stats for the run, or None if it was skipped
        """
        if not self.running and not force:
            logger.debug("Skipping sales sync - orchestrator is stopped")
            return None
        if not self._sales_slot.try_acquire():
            logger.warning("Skipping sales sync - previous run still in progress")
            return None
        try:
            return await self._execute_sales_sync()
        finally:
            self._sales_slot.release()

    async def _execute_sales_sync(self) -> RunStats:
        started_at = _now_utc()
        start = time.monotonic()
        logger.info("Starting sales sync...")

        try:
            await self._call(
                SALES_TASK,
                "Refreshing time context",
                self.posting_pipeline.refresh_time_context(),
            )
            result = await self._call(
                SALES_TASK, "Processing new sales", self.source_processor.process_new_sales()
            )

            outcomes: list[PostOutcome] = []
            if result.new_count > 0 and result.records:
                settings = await self._call(
                    SALES_TASK, "Loading posting settings", self.posting_pipeline.get_settings()
                )
                if self._sales_posting_permitted(settings):
                    logger.info(f"Auto-posting {len(result.records)} new sales...")
                    outcomes = list(
                        await self._call(
                            SALES_TASK,
                            "Posting new sales",
                            self.posting_pipeline.process_new_sales(result.records, settings),
                        )
                    )
                    logger.info(
                        f"Sales auto-posting results: {OutcomeTally.from_outcomes(outcomes)}"
                    )
                else:
                    logger.info("Sales auto-posting disabled - new sales recorded only")
        except Exception as e:
            return self._record_sales_failure(started_at, time.monotonic() - start, e)

        stats = SalesRunStats(
            started_at=started_at,
            duration_seconds=time.monotonic() - start,
            fetched=result.fetched,
            new_count=result.new_count,
            duplicate_count=result.duplicate_count,
            error_count=result.error_count,
            post_outcomes=outcomes,
        )
        self.last_run_time = started_at
        self.last_run_stats = stats
        self.consecutive_errors = 0

        tally = stats.tally
        logger.info(
            f"Sales sync completed in {stats.duration_seconds:.2f}s: "
            f"fetched={stats.fetched} new={stats.new_count} "
            f"duplicates={stats.duplicate_count} errors={stats.error_count} "
            f"posted={tally.posted} skipped={tally.skipped} failed={tally.failed}"
        )
        if stats.new_count > 0:
            logger.info(f"Found {stats.new_count} new sales to process")
        if tally.posted > 0:
            logger.info(f"Posted {tally.posted} sales")
        if stats.error_count > 0:
            logger.warning(f"Encountered {stats.error_count} errors during processing")

        return stats

    def _record_sales_failure(
        self, started_at: datetime, duration: float, error: Exception
    ) -> FailureStats:
        self.consecutive_errors += 1
        logger.error(
            f"Sales sync failed (attempt {self.consecutive_errors}/"
            f"{self.max_consecutive_errors}): {error}"
        )

        stats = FailureStats(
            task=SALES_TASK,
            started_at=started_at,
            duration_seconds=duration,
            error_message=str(error),
            consecutive_errors=self.consecutive_errors,
        )
        self.last_run_stats = stats

        if self.consecutive_errors >= self.max_consecutive_errors:
            logger.error(
                f"Too many consecutive errors ({self.consecutive_errors}). "
                "Stopping orchestrator for safety."
            )
            if self.stop():
                logger.critical(
                    "ORCHESTRATOR STOPPED DUE TO REPEATED FAILURES - manual intervention required"
                )
            else:
                logger.warning("Orchestrator already stopped - error threshold reached")

        return stats

    async def run_registration_sync(self, *, force: bool = False) -> RunStats | None:
        """Run one registration sync. Failures are logged, never counted.

        Args:
            force: Run even while the orchestrator is stopped

        Returns:
            Stats for the run, or None if it was skipped
        """
        if not self.running and not force:
            logger.debug("Skipping registration sync - orchestrator is stopped")
            return None
        if not self._registration_slot.try_acquire():
            logger.warning("Skipping registration sync - previous run still in progress")
            return None
        try:
            stats = await self._execute_registration_sync()
        finally:
            self._registration_slot.release()
        self.last_registration_stats = stats
        return stats

    async def _execute_registration_sync(self) -> RunStats:
        started_at = _now_utc()
        start = time.monotonic()
        logger.info("Starting registration sync...")

        try:
            registrations: list[Any] = await self._call(
                REGISTRATION_TASK,
                "Loading unpublished registrations",
                asyncio.to_thread(
                    self.state_store.get_unpublished_registrations,
                    self.registration_batch_size,
                ),
            )

            outcomes: list[PostOutcome] = []
            if registrations:
                settings = await self._call(
                    REGISTRATION_TASK,
                    "Loading posting settings",
                    self.posting_pipeline.get_settings(),
                )
                if self._registration_posting_permitted(settings):
                    logger.info(
                        f"Auto-posting {len(registrations)} unposted registrations..."
                    )
                    outcomes = list(
                        await self._call(
                            REGISTRATION_TASK,
                            "Posting registrations",
                            self.posting_pipeline.process_new_registrations(
                                registrations, settings
                            ),
                        )
                    )
                    logger.info(
                        "Registration auto-posting results: "
                        f"{OutcomeTally.from_outcomes(outcomes)}"
                    )
        except Exception as e:
            logger.error(f"Registration sync failed: {e}")
            return FailureStats(
                task=REGISTRATION_TASK,
                started_at=started_at,
                duration_seconds=time.monotonic() - start,
                error_message=str(e),
            )

        stats = RegistrationRunStats(
            started_at=started_at,
            duration_seconds=time.monotonic() - start,
            unposted_found=len(registrations),
            post_outcomes=outcomes,
        )

        posted = stats.tally.posted
        logger.info(
            f"Registration sync completed in {stats.duration_seconds:.2f}s: "
            f"unposted_found={stats.unposted_found} posted={posted}"
        )
        if stats.unposted_found > 0:
            logger.info(
                f"Processed {stats.unposted_found} registrations: {posted} posted, "
                f"{stats.unposted_found - posted} skipped/failed"
            )

        return stats

    async def trigger_manual_sync(self, *, force: bool = False) -> ManualSyncResult:
        """Run sales then registrations once, outside the schedule.

        Leaves both schedules untouched. While stopped nothing runs unless
        ``force`` is set, so a tripped orchestrator is not driven by accident.

        Args:
            force: Run even while the orchestrator is stopped
        """
        if not self.running and not force:
            logger.warning("Manual sync ignored - orchestrator is stopped")
            return ManualSyncResult(success=False, error="Orchestrator is stopped")

        logger.info("Manual sync triggered - running sales and registration processing")
        try:
            sales_stats = await self.run_sales_sync(force=force)
            registration_stats = await self.run_registration_sync(force=force)
        except Exception as e:
            logger.error(f"Manual sync failed: {e}")
            return ManualSyncResult(success=False, error=str(e))

        failures = [
            stats
            for stats in (sales_stats, registration_stats)
            if isinstance(stats, FailureStats)
        ]
        if failures:
            return ManualSyncResult(
                success=False,
                sales_stats=sales_stats,
                registration_stats=registration_stats,
                error="; ".join(f"{f.task}: {f.error_message}" for f in failures),
            )
        return ManualSyncResult(
            success=True,
            sales_stats=sales_stats,
            registration_stats=registration_stats,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> StatusSnapshot:
        next_sales = self._sales_handle.next_fire_time() if self._sales_handle else None
        next_registration = (
            self._registration_handle.next_fire_time()
            if self._registration_handle
            else None
        )
        upcoming = [t for t in (next_sales, next_registration) if t is not None]

        uptime = 0.0
        if self.last_run_time:
            uptime = (_now_utc() - self.last_run_time).total_seconds()

        return StatusSnapshot(
            running=self.running,
            last_run_time=self.last_run_time,
            last_run_stats=self.last_run_stats,
            last_registration_stats=self.last_registration_stats,
            consecutive_errors=self.consecutive_errors,
            max_consecutive_errors=self.max_consecutive_errors,
            next_sales_run_time=next_sales,
            next_registration_run_time=next_registration,
            next_run_time=min(upcoming) if upcoming else None,
            uptime_seconds=uptime,
            healthy=self.is_healthy(),
        )

    def get_upcoming_runs(self, count: int = 5) -> UpcomingRuns:
        """Get the next ``count`` fire times for each task.

        Both lists are empty unless both tasks are scheduled.
        """
        if not self._sales_handle or not self._registration_handle or count <= 0:
            return UpcomingRuns()
        return UpcomingRuns(
            sales=self._sales_handle.fire_times(count),
            registrations=self._registration_handle.fire_times(count),
        )
