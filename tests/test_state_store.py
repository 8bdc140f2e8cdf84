"""Tests for the SQLite state store."""

from __future__ import annotations

import sqlite3

import pytest

from scheduler import PersistenceError, SQLiteStateStore


@pytest.fixture
def store(tmp_path):
    """State store on a fresh database file."""
    return SQLiteStateStore(str(tmp_path / "state" / "orchestrator.db"))


class TestSystemState:
    """Test key-value persistence."""

    def test_missing_key_returns_none(self, store):
        assert store.get_value("scheduler_enabled") is None

    def test_set_then_get(self, store):
        store.set_value("scheduler_enabled", "true")

        assert store.get_value("scheduler_enabled") == "true"

    def test_set_overwrites(self, store):
        store.set_value("scheduler_enabled", "true")
        store.set_value("scheduler_enabled", "false")

        assert store.get_value("scheduler_enabled") == "false"

    def test_survives_new_instance(self, store):
        """A restarted process sees the value written before."""
        store.set_value("scheduler_enabled", "true")

        reopened = SQLiteStateStore(store.db_path)

        assert reopened.get_value("scheduler_enabled") == "true"

    def test_sqlite_errors_become_persistence_errors(self, store):
        conn = sqlite3.connect(store.db_path)
        conn.execute("DROP TABLE system_state")
        conn.commit()
        conn.close()

        with pytest.raises(PersistenceError):
            store.get_value("scheduler_enabled")
        with pytest.raises(PersistenceError):
            store.set_value("scheduler_enabled", "true")


class TestRegistrations:
    """Test unpublished registration tracking."""

    def test_unpublished_oldest_first_and_limited(self, store):
        ids = [store.add_registration(f"name{i}.eth") for i in range(5)]

        pending = store.get_unpublished_registrations(limit=3)

        assert [r["id"] for r in pending] == ids[:3]

    def test_payload_round_trips(self, store):
        store.add_registration("alpha.eth", {"cost_eth": 0.01, "years": 2})

        (registration,) = store.get_unpublished_registrations(10)

        assert registration["name"] == "alpha.eth"
        assert registration["payload"] == {"cost_eth": 0.01, "years": 2}

    def test_mark_posted_excludes_registration(self, store):
        first = store.add_registration("alpha.eth", registration_id="reg-1")
        store.add_registration("bravo.eth", registration_id="reg-2")

        assert store.mark_registration_posted(first) is True
        assert store.mark_registration_posted(first) is False

        pending = store.get_unpublished_registrations(10)
        assert [r["id"] for r in pending] == ["reg-2"]

    def test_duplicate_id_is_persistence_error(self, store):
        store.add_registration("alpha.eth", registration_id="reg-1")

        with pytest.raises(PersistenceError):
            store.add_registration("alpha.eth", registration_id="reg-1")
