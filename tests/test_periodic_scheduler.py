"""Tests for the fixed-period scheduler."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from scheduler import PeriodicScheduler, TaskSlot
from scheduler.scheduler import aligned_anchor


async def _noop() -> None:
    return None


@pytest.fixture
async def periodic():
    scheduler = PeriodicScheduler()
    yield scheduler
    scheduler.shutdown()


class TestAlignedAnchor:
    """Test period alignment."""

    def test_five_minute_alignment(self):
        now = datetime(2026, 3, 14, 9, 27, 41, tzinfo=timezone.utc)

        anchor = aligned_anchor(timedelta(minutes=5), now)

        assert anchor == datetime(2026, 3, 14, 9, 25, tzinfo=timezone.utc)

    def test_minute_alignment(self):
        now = datetime(2026, 3, 14, 9, 27, 41, 500, tzinfo=timezone.utc)

        anchor = aligned_anchor(timedelta(minutes=1), now)

        assert anchor == datetime(2026, 3, 14, 9, 27, tzinfo=timezone.utc)

    def test_exact_boundary(self):
        now = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)

        assert aligned_anchor(timedelta(minutes=5), now) == now

    def test_rejects_non_positive_period(self):
        with pytest.raises(ValueError):
            aligned_anchor(timedelta(0))

    def test_rejects_sub_second_period(self):
        with pytest.raises(ValueError):
            aligned_anchor(timedelta(milliseconds=500))
        with pytest.raises(ValueError):
            aligned_anchor(timedelta(seconds=90, milliseconds=250))


class TestScheduleHandle:
    """Test scheduling through APScheduler."""

    async def test_schedule_rejects_fractional_period(self, periodic):
        """A fractional period never reaches the trigger as zero seconds."""
        with pytest.raises(ValueError):
            periodic.schedule("job", timedelta(milliseconds=500), _noop)

        assert periodic.is_running is False

    async def test_schedule_starts_scheduler(self, periodic):
        assert periodic.is_running is False

        periodic.schedule("job", timedelta(minutes=5), _noop)

        assert periodic.is_running is True

    async def test_next_fire_time_is_aligned_and_future(self, periodic):
        handle = periodic.schedule("job", timedelta(minutes=5), _noop)

        next_fire = handle.next_fire_time()

        assert next_fire > datetime.now(timezone.utc)
        assert next_fire - datetime.now(timezone.utc) <= timedelta(minutes=5)
        assert next_fire.minute % 5 == 0
        assert next_fire.second == 0
        assert next_fire.microsecond == 0

    async def test_fire_times_follow_period(self, periodic):
        handle = periodic.schedule("job", timedelta(minutes=1), _noop)

        times = handle.fire_times(3)

        assert len(times) == 3
        assert times[1] - times[0] == timedelta(minutes=1)
        assert times[2] - times[1] == timedelta(minutes=1)
        assert times[0] == handle.next_fire_time()

    async def test_cancel_is_idempotent(self, periodic):
        handle = periodic.schedule("job", timedelta(minutes=1), _noop)

        handle.cancel()
        handle.cancel()

        assert handle.active is False
        assert handle.next_fire_time() is None
        assert handle.fire_times(3) == []

    async def test_same_id_replaces_job(self, periodic):
        periodic.schedule("job", timedelta(minutes=1), _noop)
        periodic.schedule("job", timedelta(minutes=5), _noop)

        jobs = periodic._scheduler.get_jobs()

        assert len(jobs) == 1

    async def test_shutdown_is_safe_twice(self, periodic):
        periodic.schedule("job", timedelta(minutes=1), _noop)

        periodic.shutdown()
        periodic.shutdown()

        assert periodic.is_running is False


class TestTaskSlot:
    """Test the per-task re-entrancy guard."""

    def test_acquire_and_release(self):
        slot = TaskSlot("sales")

        assert slot.try_acquire() is True
        assert slot.try_acquire() is False
        slot.release()
        assert slot.try_acquire() is True
