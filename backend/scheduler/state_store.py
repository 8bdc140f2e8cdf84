"""SQLite-backed state store for orchestrator restart continuity.

Persists the orchestrator enabled flag (and any other status values) in a
key-value table, and tracks which registrations have been posted.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class SQLiteStateStore:
    """State store using SQLite with a connection per call."""

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize the state store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path or os.getenv("DB_PATH", "./data/orchestrator.db")
        self._ensure_tables()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        """Ensure state tables exist."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        conn = self._get_conn()
        try:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS system_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS registrations (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    payload TEXT,
                    created_at TEXT NOT NULL,
                    posted INTEGER DEFAULT 0,
                    posted_at TEXT
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_registrations_posted
                ON registrations(posted, created_at)
            """)

            conn.commit()
        finally:
            conn.close()

    def get_value(self, key: str) -> str | None:
        """Read a persisted value.

        Args:
            key: State key

        Returns:
            Stored string or None if the key is missing
        """
        try:
            conn = self._get_conn()
            try:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM system_state WHERE key = ?", (key,))
                row = cursor.fetchone()
                return row["value"] if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read state '{key}': {e}") from e

    def set_value(self, key: str, value: str) -> None:
        """Insert or replace a persisted value.

        Args:
            key: State key
            value: String value to store
        """
        updated_at = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._get_conn()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO system_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, updated_at),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write state '{key}': {e}") from e

    def add_registration(
        self,
        name: str,
        payload: dict[str, Any] | None = None,
        registration_id: str | None = None,
    ) -> str:
        """Record a registration awaiting posting.

        Args:
            name: Registered name
            payload: Additional registration details
            registration_id: Explicit ID, generated if omitted

        Returns:
            Registration ID
        """
        registration_id = registration_id or str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._get_conn()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO registrations (id, name, payload, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        registration_id,
                        name,
                        json.dumps(payload) if payload else None,
                        created_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to add registration: {e}") from e
        return registration_id

    def get_unpublished_registrations(self, limit: int = 10) -> list[dict[str, Any]]:
        """Get registrations not yet posted, oldest first.

        Args:
            limit: Maximum results

        Returns:
            List of registration dicts
        """
        try:
            conn = self._get_conn()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    SELECT id, name, payload, created_at FROM registrations
                    WHERE posted = 0
                    ORDER BY created_at ASC, rowid ASC
                    LIMIT ?
                    """,
                    (limit,),
                )
                registrations = []
                for row in cursor.fetchall():
                    registration = dict(row)
                    if registration.get("payload"):
                        registration["payload"] = json.loads(registration["payload"])
                    registrations.append(registration)
                return registrations
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load registrations: {e}") from e

    def mark_registration_posted(self, registration_id: str) -> bool:
        """Flag a registration as posted.

        Args:
            registration_id: Registration ID

        Returns:
            True if a pending registration was updated
        """
        posted_at = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._get_conn()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    UPDATE registrations
                    SET posted = 1, posted_at = ?
                    WHERE id = ? AND posted = 0
                    """,
                    (posted_at, registration_id),
                )
                conn.commit()
                return cursor.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to mark registration {registration_id} posted: {e}"
            ) from e
