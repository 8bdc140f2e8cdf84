"""Value types shared by the orchestrator, its collaborators and the API.

Run statistics form a tagged union (``SalesRunStats``, ``RegistrationRunStats``,
``FailureStats``) keyed by their ``kind`` field so consumers can match on the
variant instead of probing for field presence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union


class PostOutcomeKind(str, Enum):
    """Result of handing one record to the posting pipeline."""

    POSTED = "posted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class PostOutcome:
    """Outcome for a single record produced by the posting pipeline.

    Quota exhaustion is reported as a FAILED outcome with reason
    ``"quota_exceeded"`` rather than raised.
    """

    kind: PostOutcomeKind
    reason: str | None = None
    record_id: str | None = None

    @classmethod
    def posted(cls, record_id: str | None = None) -> PostOutcome:
        return cls(PostOutcomeKind.POSTED, None, record_id)

    @classmethod
    def skipped(cls, reason: str, record_id: str | None = None) -> PostOutcome:
        return cls(PostOutcomeKind.SKIPPED, reason, record_id)

    @classmethod
    def failed(cls, reason: str, record_id: str | None = None) -> PostOutcome:
        return cls(PostOutcomeKind.FAILED, reason, record_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "record_id": self.record_id,
        }


@dataclass(frozen=True)
class OutcomeTally:
    """Posted/skipped/failed counts over a batch of outcomes."""

    posted: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: list[PostOutcome]) -> OutcomeTally:
        return cls(
            posted=sum(1 for o in outcomes if o.kind is PostOutcomeKind.POSTED),
            skipped=sum(1 for o in outcomes if o.kind is PostOutcomeKind.SKIPPED),
            failed=sum(1 for o in outcomes if o.kind is PostOutcomeKind.FAILED),
        )

    def __str__(self) -> str:
        return f"{self.posted} posted, {self.skipped} skipped, {self.failed} failed"


@dataclass
class PostingSettings:
    """Posting configuration returned by the posting pipeline."""

    enabled: bool = False
    registrations_enabled: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class SalesSyncResult:
    """Result of one fetch-and-dedup pass of the source processor."""

    fetched: int
    new_count: int
    duplicate_count: int
    error_count: int
    records: list[Any] = field(default_factory=list)


@dataclass
class SalesRunStats:
    """Statistics for a completed sales sync run."""

    started_at: datetime
    duration_seconds: float
    fetched: int
    new_count: int
    duplicate_count: int
    error_count: int
    post_outcomes: list[PostOutcome] = field(default_factory=list)
    kind: Literal["sales"] = "sales"

    @property
    def tally(self) -> OutcomeTally:
        return OutcomeTally.from_outcomes(self.post_outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "success": True,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "fetched": self.fetched,
            "new_count": self.new_count,
            "duplicate_count": self.duplicate_count,
            "error_count": self.error_count,
            "post_outcomes": [o.to_dict() for o in self.post_outcomes],
        }


@dataclass
class RegistrationRunStats:
    """Statistics for a completed registration sync run."""

    started_at: datetime
    duration_seconds: float
    unposted_found: int
    post_outcomes: list[PostOutcome] = field(default_factory=list)
    kind: Literal["registrations"] = "registrations"

    @property
    def tally(self) -> OutcomeTally:
        return OutcomeTally.from_outcomes(self.post_outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "success": True,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "unposted_found": self.unposted_found,
            "post_outcomes": [o.to_dict() for o in self.post_outcomes],
        }


@dataclass
class FailureStats:
    """Statistics for a run that raised."""

    task: str
    started_at: datetime
    duration_seconds: float
    error_message: str
    # Only sales failures carry the trip-wire count
    consecutive_errors: int | None = None
    kind: Literal["failure"] = "failure"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "success": False,
            "task": self.task,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
            "consecutive_errors": self.consecutive_errors,
        }


RunStats = Union[SalesRunStats, RegistrationRunStats, FailureStats]


@dataclass
class TaskSlot:
    """Re-entrancy guard for one scheduled task.

    All mutation happens on the event loop thread, so a plain flag is enough.
    """

    name: str
    in_flight: bool = False

    def try_acquire(self) -> bool:
        if self.in_flight:
            return False
        self.in_flight = True
        return True

    def release(self) -> None:
        self.in_flight = False


@dataclass
class StatusSnapshot:
    """Point-in-time view of the orchestrator for the dashboard."""

    running: bool
    last_run_time: datetime | None
    last_run_stats: RunStats | None
    last_registration_stats: RunStats | None
    consecutive_errors: int
    max_consecutive_errors: int
    next_sales_run_time: datetime | None
    next_registration_run_time: datetime | None
    # Nearest upcoming fire of either task; kept for single-schedule consumers
    next_run_time: datetime | None
    uptime_seconds: float
    healthy: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "last_run_time": _iso(self.last_run_time),
            "last_run_stats": self.last_run_stats.to_dict()
            if self.last_run_stats
            else None,
            "last_registration_stats": self.last_registration_stats.to_dict()
            if self.last_registration_stats
            else None,
            "consecutive_errors": self.consecutive_errors,
            "max_consecutive_errors": self.max_consecutive_errors,
            "next_sales_run_time": _iso(self.next_sales_run_time),
            "next_registration_run_time": _iso(self.next_registration_run_time),
            "next_run_time": _iso(self.next_run_time),
            "uptime_seconds": self.uptime_seconds,
            "healthy": self.healthy,
        }


@dataclass
class UpcomingRuns:
    """Projected fire times per task."""

    sales: list[datetime] = field(default_factory=list)
    registrations: list[datetime] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "sales": [t.isoformat() for t in self.sales],
            "registrations": [t.isoformat() for t in self.registrations],
        }


@dataclass
class ManualSyncResult:
    """Aggregate result of a manually triggered sync."""

    success: bool
    sales_stats: RunStats | None = None
    registration_stats: RunStats | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "stats": {
                "sales": self.sales_stats.to_dict() if self.sales_stats else None,
                "registrations": self.registration_stats.to_dict()
                if self.registration_stats
                else None,
            },
            "error": self.error,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
