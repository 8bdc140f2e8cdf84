"""Periodic sync orchestration for sales and registration posting.

Uses APScheduler to fire two fixed-period tasks on the asyncio event loop,
with a consecutive-failure trip-wire and persisted enabled state for
recovery after restarts.
"""

from .collaborators import (
    PostingGate,
    PostingPipeline,
    SourceProcessor,
    StateStore,
)
from .errors import (
    CollaboratorUnavailableError,
    ConfigurationMissingError,
    OrchestratorError,
    PersistenceError,
)
from .models import (
    FailureStats,
    ManualSyncResult,
    OutcomeTally,
    PostingSettings,
    PostOutcome,
    PostOutcomeKind,
    RegistrationRunStats,
    RunStats,
    SalesRunStats,
    SalesSyncResult,
    StatusSnapshot,
    TaskSlot,
    UpcomingRuns,
)
from .orchestrator import SyncOrchestrator
from .scheduler import PeriodicScheduler, ScheduleHandle
from .state_store import SQLiteStateStore

__all__ = [
    "SyncOrchestrator",
    "PeriodicScheduler",
    "ScheduleHandle",
    "SQLiteStateStore",
    # Collaborators
    "PostingGate",
    "PostingPipeline",
    "SourceProcessor",
    "StateStore",
    # Errors
    "OrchestratorError",
    "CollaboratorUnavailableError",
    "ConfigurationMissingError",
    "PersistenceError",
    # Models
    "PostOutcome",
    "PostOutcomeKind",
    "OutcomeTally",
    "PostingSettings",
    "SalesSyncResult",
    "SalesRunStats",
    "RegistrationRunStats",
    "FailureStats",
    "RunStats",
    "TaskSlot",
    "StatusSnapshot",
    "UpcomingRuns",
    "ManualSyncResult",
]
