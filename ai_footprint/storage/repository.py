"""
Repository pattern for ledger persistence.

Stores the current daily ledger, the archive of past days, the holding
area for commands submitted while no ledger host could take them, and the
lock that marks which process owns the ledger.

Persisted layout:
1. current_ledger - a single row keyed by the fixed name "dailyData"
2. ledger_archive - one row per past day keyed "history_<ISO date>"
3. pending_command - trackTokens and resetData commands waiting to be ingested
4. host_lock - pid of the running ledger host, if any
"""

import json
import logging
import os
import threading
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from ai_footprint.core.ledger import DailyLedger
from ai_footprint.ingestion.events import TrackTokensPayload

from .db import DEFAULT_DB_PATH, get_connection
from .models import ArchivedLedger, CURRENT_LEDGER_KEY, HOST_LOCK_KEY, archive_key

logger = logging.getLogger(__name__)

LedgerListener = Callable[[DailyLedger], None]

_LEDGER_COLUMNS = "date, queries, total_tokens, energy_wh, carbon_grams, water_ml"


def _row_to_ledger(row) -> DailyLedger:
    return DailyLedger(
        date=date.fromisoformat(row[0]),
        queries=row[1],
        total_tokens=row[2],
        energy_wh=row[3],
        carbon_grams=row[4],
        water_ml=row[5]
    )


def _process_alive(pid: int) -> bool:
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    return True


def _ledger_values(ledger: DailyLedger) -> tuple:
    return (
        ledger.date.isoformat(),
        ledger.queries,
        ledger.total_tokens,
        ledger.energy_wh,
        ledger.carbon_grams,
        ledger.water_ml
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS current_ledger (
                name TEXT PRIMARY KEY,
                date TEXT NOT NULL,
                queries INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                energy_wh REAL NOT NULL DEFAULT 0,
                carbon_grams REAL NOT NULL DEFAULT 0,
                water_ml REAL NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger_archive (
                key TEXT PRIMARY KEY,
                date TEXT NOT NULL,
                queries INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                energy_wh REAL NOT NULL,
                carbon_grams REAL NOT NULL,
                water_ml REAL NOT NULL,
                archived_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pending_command (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                command TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS host_lock (
                name TEXT PRIMARY KEY,
                pid INTEGER NOT NULL,
                acquired_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class LedgerRepository:
    """Durable key-value style store for the daily ledger.

    The ledger service is the only writer of current_ledger and
    ledger_archive. Readers may see a slightly stale record right after
    a write.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._listeners: List[LedgerListener] = []
        self._listeners_lock = threading.Lock()

    def load_current(self) -> Optional[DailyLedger]:
        """Load the current ledger record.

        Returns:
            The stored ledger, or None if nothing has been saved yet
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_LEDGER_COLUMNS} FROM current_ledger WHERE name = ?",
                (CURRENT_LEDGER_KEY,)
            )
            row = cursor.fetchone()
            return _row_to_ledger(row) if row else None
        finally:
            conn.close()

    def save_current(self, ledger: DailyLedger) -> None:
        """Replace the current ledger record and notify subscribers.

        Args:
            ledger: Ledger to persist
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT OR REPLACE INTO current_ledger
                (name, {_LEDGER_COLUMNS}, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (CURRENT_LEDGER_KEY, *_ledger_values(ledger), datetime.now().isoformat()))
            conn.commit()
        finally:
            conn.close()

        self._notify(ledger)

    def archive_ledger(self, ledger: DailyLedger, archived_at: Optional[datetime] = None) -> ArchivedLedger:
        """Write the archive record for the ledger's day.

        An existing archive for the same day is replaced (last write wins).

        Args:
            ledger: Closed-out ledger
            archived_at: Archive timestamp, defaults to now

        Returns:
            The archived record
        """
        record = ArchivedLedger(ledger=ledger, archived_at=archived_at or datetime.now())
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT OR REPLACE INTO ledger_archive
                (key, {_LEDGER_COLUMNS}, archived_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (record.key, *_ledger_values(ledger), record.archived_at.isoformat()))
            conn.commit()
        finally:
            conn.close()
        return record

    def get_archive(self, day: date) -> Optional[ArchivedLedger]:
        """Fetch the archive record for a calendar day, if any."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_LEDGER_COLUMNS}, archived_at FROM ledger_archive WHERE key = ?",
                (archive_key(day),)
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return ArchivedLedger(
                ledger=_row_to_ledger(row),
                archived_at=datetime.fromisoformat(row[6])
            )
        finally:
            conn.close()

    def list_archives(self, limit: int = 30) -> List[ArchivedLedger]:
        """List archived days, newest first.

        Args:
            limit: Maximum number of records to return
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_LEDGER_COLUMNS}, archived_at FROM ledger_archive "
                "ORDER BY date DESC LIMIT ?",
                (limit,)
            )
            return [
                ArchivedLedger(
                    ledger=_row_to_ledger(row),
                    archived_at=datetime.fromisoformat(row[6])
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def enqueue_pending_turn(self, payload: TrackTokensPayload) -> None:
        """Park a trackTokens payload until the ledger host picks it up."""
        self._enqueue_pending({"action": "trackTokens", "data": payload.to_dict()})

    def enqueue_pending_reset(self) -> None:
        """Park a resetData request for the running ledger host."""
        self._enqueue_pending({"action": "resetData"})

    def _enqueue_pending(self, command: Dict[str, Any]) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO pending_command (command, created_at) VALUES (?, ?)",
                (json.dumps(command), datetime.now().isoformat())
            )
            conn.commit()
        finally:
            conn.close()

    def drain_pending_commands(self) -> List[Dict[str, Any]]:
        """Read and clear the holding area atomically, oldest first.

        Returns:
            Command mappings in the form accepted by CommandHandler.handle.
            Rows that are not JSON objects are dropped with a warning.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute("SELECT id, command FROM pending_command ORDER BY id").fetchall()
            conn.execute("DELETE FROM pending_command")
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        commands = []
        for row_id, raw in rows:
            try:
                command = json.loads(raw)
            except ValueError as e:
                logger.warning("Dropping unreadable pending command %s: %s", row_id, e)
                continue
            if not isinstance(command, dict):
                logger.warning("Dropping unreadable pending command %s: not an object", row_id)
                continue
            commands.append(command)
        return commands

    def acquire_host_lock(self) -> Optional[int]:
        """Claim the store for a ledger host running in this process.

        A lock left behind by a process that no longer exists is taken over.

        Returns:
            None if the lock was acquired, otherwise the pid of the live
            process holding it
        """
        pid = os.getpid()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT pid FROM host_lock WHERE name = ?", (HOST_LOCK_KEY,)
            ).fetchone()
            if row is not None and _process_alive(row[0]):
                conn.rollback()
                return row[0]
            conn.execute(
                "INSERT OR REPLACE INTO host_lock (name, pid, acquired_at) VALUES (?, ?, ?)",
                (HOST_LOCK_KEY, pid, datetime.now().isoformat())
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return None

    def release_host_lock(self) -> None:
        """Release the host lock if this process holds it."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "DELETE FROM host_lock WHERE name = ? AND pid = ?",
                (HOST_LOCK_KEY, os.getpid())
            )
            conn.commit()
        finally:
            conn.close()

    def host_owner(self) -> Optional[int]:
        """Pid of the live ledger host that owns the store, if any.

        While a host owns the store, other processes must route mutations
        through the holding area instead of writing current_ledger.
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT pid FROM host_lock WHERE name = ?", (HOST_LOCK_KEY,)
            ).fetchone()
        finally:
            conn.close()
        if row is None or not _process_alive(row[0]):
            return None
        return row[0]

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register a callback invoked with the ledger after every save.

        Notification is in-process: listeners run on the writer's thread
        and only see saves made through this repository instance. The
        serve command forwards them to its client as change lines; other
        processes poll.

        Returns:
            A function that removes the subscription
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, ledger: DailyLedger) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(ledger)
            except Exception:
                # A broken viewer must not fail the writer
                logger.exception("Ledger change listener failed")


# Repository instances per database path
_repositories: Dict[str, LedgerRepository] = {}


def get_repository(db_path: str = DEFAULT_DB_PATH) -> LedgerRepository:
    """Get the repository instance for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        A cached LedgerRepository, so subscribers registered through one
        caller see saves made through another
    """
    if db_path not in _repositories:
        _repositories[db_path] = LedgerRepository(db_path)
    return _repositories[db_path]
