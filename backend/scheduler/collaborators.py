"""Interfaces of the services the orchestrator drives.

The upstream sales client and the posting platform client live outside this
package; they only need to satisfy these protocols.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from .models import PostingSettings, PostOutcome, SalesSyncResult

logger = logging.getLogger(__name__)


class SourceProcessor(Protocol):
    """Fetches and deduplicates new sale records from the upstream source."""

    async def process_new_sales(self) -> SalesSyncResult: ...


class PostingPipeline(Protocol):
    """Publishes records to the external platform within its quota."""

    async def get_settings(self) -> PostingSettings: ...

    async def process_new_sales(
        self, records: list[Any], settings: PostingSettings
    ) -> list[PostOutcome]: ...

    async def process_new_registrations(
        self, records: list[Any], settings: PostingSettings
    ) -> list[PostOutcome]: ...

    async def refresh_time_context(self) -> None: ...


class StateStore(Protocol):
    """Key-value persistence plus access to unpublished registrations.

    Implementations are synchronous; the orchestrator calls them off the
    event loop where a run would otherwise block.
    """

    def get_value(self, key: str) -> str | None: ...

    def set_value(self, key: str, value: str) -> None: ...

    def get_unpublished_registrations(self, limit: int) -> list[dict[str, Any]]: ...


class PostingGate:
    """Global auto-posting kill-switch.

    Constructed once by the application and injected wherever it is read.
    Independent of whether the orchestrator itself is running.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._lock = threading.Lock()

    def is_auto_posting_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            changed = self._enabled != enabled
            self._enabled = enabled
        if changed:
            logger.info(f"Auto-posting {'enabled' if enabled else 'disabled'}")

    def enable(self) -> None:
        self.set_enabled(True)

    def disable(self) -> None:
        self.set_enabled(False)
