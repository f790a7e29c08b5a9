"""
Unit tests for storage layer.

Tests schema creation, ledger persistence, archives, the pending command
holding area and the host lock.
"""

import os
import tempfile
from datetime import date, datetime
from unittest.mock import patch

import pytest

from ai_footprint.core.ledger import DailyLedger, Role
from ai_footprint.ingestion.events import TrackTokensPayload
from ai_footprint.storage.db import get_connection
from ai_footprint.storage.models import ArchivedLedger, archive_key
from ai_footprint.storage.repository import (
    LedgerRepository,
    get_repository,
    initialize_schema,
)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        yield path


@pytest.fixture
def repository(db_path):
    return LedgerRepository(db_path)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self, db_path):
        """Verify tables are created correctly."""
        conn = get_connection(db_path)
        try:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in cursor.fetchall()}
            assert {"current_ledger", "ledger_archive", "pending_command", "host_lock"} <= tables

            cursor = conn.execute("PRAGMA table_info(ledger_archive)")
            column_names = [col[1] for col in cursor.fetchall()]
            assert column_names == [
                "key", "date", "queries", "total_tokens",
                "energy_wh", "carbon_grams", "water_ml", "archived_at"
            ]
        finally:
            conn.close()

    def test_schema_creation_is_repeatable(self, db_path):
        initialize_schema(db_path)
        initialize_schema(db_path)

    def test_nested_directory_is_created(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "nested", "dir", "test.db")
            initialize_schema(path)
            assert os.path.exists(path)


class TestArchiveKeys:
    """Test storage key naming."""

    def test_archive_key(self):
        assert archive_key(date(2024, 1, 1)) == "history_2024-01-01"

    def test_archived_ledger_key(self):
        record = ArchivedLedger(ledger=DailyLedger.zeroed(date(2024, 3, 9)), archived_at=datetime(2024, 3, 10))
        assert record.key == "history_2024-03-09"


class TestCurrentLedger:
    """Test the current ledger record."""

    def test_missing_record_is_none(self, repository):
        assert repository.load_current() is None

    def test_save_and_load(self, repository):
        ledger = DailyLedger(
            date=date(2024, 1, 1),
            queries=1,
            total_tokens=162,
            energy_wh=0.162,
            carbon_grams=81.0,
            water_ml=16.2
        )
        repository.save_current(ledger)
        assert repository.load_current() == ledger

    def test_save_replaces_single_record(self, repository, db_path):
        repository.save_current(DailyLedger(date=date(2024, 1, 1), queries=1, total_tokens=10))
        repository.save_current(DailyLedger(date=date(2024, 1, 1), queries=2, total_tokens=30))

        assert repository.load_current().total_tokens == 30
        conn = get_connection(db_path)
        try:
            count = conn.execute("SELECT COUNT(*) FROM current_ledger").fetchone()[0]
            name = conn.execute("SELECT name FROM current_ledger").fetchone()[0]
        finally:
            conn.close()
        assert count == 1
        assert name == "dailyData"

    def test_persistence_across_instances(self, db_path):
        """Data written by one repository is read by another."""
        ledger = DailyLedger(date=date(2024, 1, 1), queries=4, total_tokens=400)
        LedgerRepository(db_path).save_current(ledger)
        assert LedgerRepository(db_path).load_current() == ledger


class TestArchives:
    """Test archived days."""

    def test_archive_and_fetch(self, repository):
        ledger = DailyLedger(date=date(2024, 1, 1), queries=1, total_tokens=500, carbon_grams=250.0)
        archived_at = datetime(2024, 1, 2, 0, 0, 1)

        record = repository.archive_ledger(ledger, archived_at=archived_at)

        assert record.key == "history_2024-01-01"
        fetched = repository.get_archive(date(2024, 1, 1))
        assert fetched == ArchivedLedger(ledger=ledger, archived_at=archived_at)

    def test_missing_archive_is_none(self, repository):
        assert repository.get_archive(date(2024, 1, 1)) is None

    def test_last_write_wins(self, repository):
        """A second archive for the same day replaces the first."""
        repository.archive_ledger(DailyLedger(date=date(2024, 1, 1), total_tokens=80))
        repository.archive_ledger(DailyLedger(date=date(2024, 1, 1), total_tokens=5))

        assert repository.get_archive(date(2024, 1, 1)).ledger.total_tokens == 5
        assert len(repository.list_archives()) == 1

    def test_list_newest_first(self, repository):
        for day in (1, 3, 2):
            repository.archive_ledger(DailyLedger.zeroed(date(2024, 1, day)))

        days = [record.ledger.date.day for record in repository.list_archives()]
        assert days == [3, 2, 1]

    def test_list_limit(self, repository):
        for day in range(1, 6):
            repository.archive_ledger(DailyLedger.zeroed(date(2024, 1, day)))
        assert len(repository.list_archives(limit=2)) == 2


class TestPendingCommands:
    """Test the holding area for commands waiting for the ledger host."""

    def test_drain_empty(self, repository):
        assert repository.drain_pending_commands() == []

    def test_enqueue_and_drain_in_order(self, repository):
        first = TrackTokensPayload(tokens=12, provider="ChatGPT", role=Role.USER, message_preview="hello")
        second = TrackTokensPayload(tokens=150, provider="ChatGPT", role=Role.ASSISTANT)
        repository.enqueue_pending_turn(first)
        repository.enqueue_pending_reset()
        repository.enqueue_pending_turn(second)

        drained = repository.drain_pending_commands()

        assert [command["action"] for command in drained] == ["trackTokens", "resetData", "trackTokens"]
        assert drained[0]["data"]["tokens"] == 12
        assert drained[0]["data"]["role"] == "user"
        assert drained[0]["data"]["message_preview"] == "hello"
        assert drained[2]["data"]["tokens"] == 150
        assert repository.drain_pending_commands() == []

    def test_unreadable_rows_are_dropped(self, repository, db_path):
        repository.enqueue_pending_turn(TrackTokensPayload(tokens=3, provider="Claude", role=Role.USER))
        conn = get_connection(db_path)
        try:
            conn.execute(
                "INSERT INTO pending_command (command, created_at) VALUES (?, ?)",
                ("not json", datetime.now().isoformat())
            )
            conn.execute(
                "INSERT INTO pending_command (command, created_at) VALUES (?, ?)",
                ("[1, 2]", datetime.now().isoformat())
            )
            conn.commit()
        finally:
            conn.close()

        drained = repository.drain_pending_commands()

        assert [command["data"]["tokens"] for command in drained] == [3]


class TestHostLock:
    """Test the lock marking which process hosts the ledger."""

    def test_no_owner_initially(self, repository):
        assert repository.host_owner() is None

    def test_acquire_and_release(self, repository):
        assert repository.acquire_host_lock() is None
        assert repository.host_owner() == os.getpid()

        repository.release_host_lock()

        assert repository.host_owner() is None

    def test_live_holder_blocks_acquire(self, repository, db_path):
        repository.acquire_host_lock()

        assert LedgerRepository(db_path).acquire_host_lock() == os.getpid()

    def test_dead_holder_is_taken_over(self, repository, db_path):
        conn = get_connection(db_path)
        try:
            conn.execute(
                "INSERT INTO host_lock (name, pid, acquired_at) VALUES (?, ?, ?)",
                ("ledgerHost", 4242, datetime.now().isoformat())
            )
            conn.commit()
        finally:
            conn.close()

        with patch("ai_footprint.storage.repository.os.kill", side_effect=ProcessLookupError):
            assert repository.host_owner() is None
            assert repository.acquire_host_lock() is None

        assert repository.host_owner() == os.getpid()

    def test_release_keeps_other_holder(self, repository, db_path):
        conn = get_connection(db_path)
        try:
            conn.execute(
                "INSERT INTO host_lock (name, pid, acquired_at) VALUES (?, ?, ?)",
                ("ledgerHost", 4242, datetime.now().isoformat())
            )
            conn.commit()
        finally:
            conn.close()

        repository.release_host_lock()

        with patch("ai_footprint.storage.repository.os.kill"):
            assert repository.host_owner() == 4242


class TestSubscriptions:
    """Test change notification."""

    def test_listener_receives_saved_ledger(self, repository):
        seen = []
        repository.subscribe(seen.append)
        ledger = DailyLedger(date=date(2024, 1, 1), total_tokens=9)

        repository.save_current(ledger)

        assert seen == [ledger]

    def test_unsubscribe(self, repository):
        seen = []
        unsubscribe = repository.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        repository.save_current(DailyLedger.zeroed(date(2024, 1, 1)))

        assert seen == []

    def test_failing_listener_does_not_break_save(self, repository):
        def broken(ledger):
            raise RuntimeError("viewer closed")

        seen = []
        repository.subscribe(broken)
        repository.subscribe(seen.append)

        repository.save_current(DailyLedger.zeroed(date(2024, 1, 1)))

        assert len(seen) == 1
        assert repository.load_current() is not None

    def test_get_repository_is_cached_per_path(self, db_path):
        assert get_repository(db_path) is get_repository(db_path)
