"""Pytest configuration and fixtures."""

from __future__ import annotations

import atexit
import os
import sys
import tempfile
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add backend to path for imports
backend_path = str(Path(__file__).parent.parent / "backend")
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# Set test database path before importing app
_temp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_temp_db_path = _temp_db.name
os.environ["DB_PATH"] = _temp_db_path


def _cleanup_test_db() -> None:
    """Clean up temporary test database file."""
    if os.path.exists(_temp_db_path):
        try:
            os.unlink(_temp_db_path)
        except OSError:
            pass  # File may already be deleted or locked


# Register cleanup to run at exit
atexit.register(_cleanup_test_db)

from scheduler import (  # noqa: E402
    PostingGate,
    PostingSettings,
    SalesSyncResult,
    SyncOrchestrator,
)


class InMemoryStateStore:
    """State store double that can be told to fail reads or writes."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.registrations: list[dict[str, Any]] = []
        self.fail_reads = False
        self.fail_writes = False
        self.fail_registrations = False
        self.set_calls: list[tuple[str, str]] = []

    def get_value(self, key: str) -> str | None:
        if self.fail_reads:
            raise RuntimeError("state store unavailable")
        return self.values.get(key)

    def set_value(self, key: str, value: str) -> None:
        self.set_calls.append((key, value))
        if self.fail_writes:
            raise RuntimeError("state store read-only")
        self.values[key] = value

    def get_unpublished_registrations(self, limit: int) -> list[dict[str, Any]]:
        if self.fail_registrations:
            raise RuntimeError("registrations query failed")
        return self.registrations[:limit]


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_db() -> None:
    """Pytest fixture to ensure test database cleanup after session."""
    yield
    _cleanup_test_db()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    """In-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def posting_settings() -> PostingSettings:
    """Settings with sales and registration posting turned on."""
    return PostingSettings(enabled=True, registrations_enabled=True)


@pytest.fixture
def source_processor() -> MagicMock:
    """Source processor that finds nothing new by default."""
    processor = MagicMock()
    processor.process_new_sales = AsyncMock(
        return_value=SalesSyncResult(
            fetched=0, new_count=0, duplicate_count=0, error_count=0, records=[]
        )
    )
    return processor


@pytest.fixture
def posting_pipeline(posting_settings: PostingSettings) -> MagicMock:
    """Posting pipeline that accepts everything and posts nothing by default."""
    pipeline = MagicMock()
    pipeline.get_settings = AsyncMock(return_value=posting_settings)
    pipeline.refresh_time_context = AsyncMock(return_value=None)
    pipeline.process_new_sales = AsyncMock(return_value=[])
    pipeline.process_new_registrations = AsyncMock(return_value=[])
    return pipeline


@pytest.fixture
def posting_gate() -> PostingGate:
    """Global posting gate, open."""
    return PostingGate(enabled=True)


@pytest.fixture
async def orchestrator(source_processor, posting_pipeline, state_store, posting_gate):
    """Stopped orchestrator wired to test doubles, shut down after the test."""
    orch = SyncOrchestrator(
        source_processor=source_processor,
        posting_pipeline=posting_pipeline,
        state_store=state_store,
        posting_gate=posting_gate,
        max_consecutive_errors=5,
        registration_batch_size=10,
        call_timeout=0,
        state_key="scheduler_enabled",
    )
    yield orch
    orch.shutdown()


@pytest.fixture
def sample_sales() -> list[dict[str, Any]]:
    """Three newly accepted sale records."""
    return [
        {"id": "sale-a", "name": "alpha.eth", "price_eth": 1.25},
        {"id": "sale-b", "name": "bravo.eth", "price_eth": 0.4},
        {"id": "sale-c", "name": "charlie.eth", "price_eth": 12.0},
    ]


@pytest.fixture
def sample_registrations() -> list[dict[str, Any]]:
    """Registrations awaiting posting."""
    return [
        {"id": f"reg-{i}", "name": f"name{i}.eth", "payload": None}
        for i in range(15)
    ]
