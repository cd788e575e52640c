"""Durable event store backed by SQLite.

The entries table is the source of truth. Every aggregate is derived from it
on demand; nothing materialized is stored.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from .constants import SQLITE_TIMEOUT_SECONDS
from .errors import StorageError
from .models import LogEntry
from .timeutil import from_storage, to_storage, to_storage_bound

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class EventStore:
    """Insert/delete/retime log of entries with synchronous commits.

    Thread-safety: the connection is guarded by a lock, so concurrent readers
    see a consistent snapshot and mutations never interleave.
    """

    def __init__(self, db_path: Path, on_change: Callable[[], None] | None = None):
        """Initialize event store.

        Args:
            db_path: Path to pouchpal.db
            on_change: Called after every committed mutation. Exceptions it
                raises are logged, never propagated.
        """
        self.db_path = db_path
        self.on_change = on_change
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open event store at {db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=SQLITE_TIMEOUT_SECONDS,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _row_to_entry(self, row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            id=row["id"],
            timestamp=from_storage(row["ts"]),
            quantity=row["quantity"],
            source=row["source"],
            note=row["note"],
        )

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)

        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] < SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} detected, may need migration")

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                ts TEXT NOT NULL,
                quantity INTEGER NOT NULL,
                source TEXT,
                note TEXT,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE INDEX IF NOT EXISTS idx_entries_ts ON entries(ts);
        """)
        conn.commit()

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.warning(f"Change listener failed: {e}")

    def _write(self, statements: Iterable[tuple[str, tuple]]) -> int:
        """Run statements in one transaction and commit. Returns rows changed."""
        with self._lock:
            conn = self._get_conn()
            changed = 0
            try:
                for sql, params in statements:
                    changed += conn.execute(sql, params).rowcount
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Write to {self.db_path} failed: {e}") from e
        return changed

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_conn().execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Read from {self.db_path} failed: {e}") from e

    @staticmethod
    def _storage_ts(timestamp: datetime) -> str:
        try:
            return to_storage(timestamp)
        except OverflowError as e:
            raise StorageError(
                f"Timestamp {timestamp.isoformat()} is outside the storable range"
            ) from e

    def _insert_statement(self, entry: LogEntry) -> tuple[str, tuple]:
        return (
            """
            INSERT INTO entries (id, ts, quantity, source, note)
            VALUES (?, ?, ?, ?, ?)
            """,
            (entry.id, self._storage_ts(entry.timestamp), entry.quantity, entry.source, entry.note),
        )

    # --- Mutations ---

    def insert(self, entry: LogEntry) -> str:
        """Persist an entry and return its ID.

        Raises:
            StorageError: If the write fails (including a reused ID) or the
                timestamp cannot be expressed in UTC.
        """
        self._write([self._insert_statement(entry)])
        self._notify()
        return entry.id

    def insert_many(self, entries: list[LogEntry]) -> list[str]:
        """Persist several entries in a single transaction."""
        if not entries:
            return []
        self._write([self._insert_statement(e) for e in entries])
        self._notify()
        return [e.id for e in entries]

    def delete(self, entry_id: str) -> bool:
        """Remove an entry. Returns False (and changes nothing) if it is absent."""
        changed = self._write([("DELETE FROM entries WHERE id = ?", (entry_id,))])
        if changed:
            self._notify()
        return bool(changed)

    def update(self, entry_id: str, timestamp: datetime) -> bool:
        """Retime an entry. Returns False if it is absent."""
        changed = self._write(
            [("UPDATE entries SET ts = ? WHERE id = ?", (self._storage_ts(timestamp), entry_id))]
        )
        if changed:
            self._notify()
        return bool(changed)

    def clear(self) -> int:
        """Delete every entry. Returns how many were removed."""
        changed = self._write([("DELETE FROM entries", ())])
        self._notify()
        return changed

    # --- Queries ---

    def get(self, entry_id: str) -> LogEntry | None:
        rows = self._read(
            "SELECT id, ts, quantity, source, note FROM entries WHERE id = ?", (entry_id,)
        )
        return self._row_to_entry(rows[0]) if rows else None

    def query_by_range(self, start: datetime, end: datetime) -> list[LogEntry]:
        """Entries with start <= timestamp < end, in no guaranteed order."""
        rows = self._read(
            "SELECT id, ts, quantity, source, note FROM entries WHERE ts >= ? AND ts < ?",
            (to_storage_bound(start), to_storage_bound(end)),
        )
        return [self._row_to_entry(row) for row in rows]

    def query_since(self, cutoff: datetime) -> list[LogEntry]:
        """Entries with timestamp >= cutoff, newest first."""
        rows = self._read(
            """
            SELECT id, ts, quantity, source, note FROM entries
            WHERE ts >= ?
            ORDER BY ts DESC, id DESC
            """,
            (to_storage_bound(cutoff),),
        )
        return [self._row_to_entry(row) for row in rows]

    def query_all(self, descending: bool = True) -> list[LogEntry]:
        """Every entry ordered by timestamp (ties broken by ID)."""
        order = "DESC" if descending else "ASC"
        rows = self._read(
            f"SELECT id, ts, quantity, source, note FROM entries ORDER BY ts {order}, id {order}"
        )
        return [self._row_to_entry(row) for row in rows]

    def total_quantity(self) -> int:
        """Sum of quantity over every entry."""
        return self._read("SELECT COALESCE(SUM(quantity), 0) FROM entries")[0][0]

    def count(self) -> int:
        """Count entries."""
        return self._read("SELECT COUNT(*) FROM entries")[0][0]

    def close(self):
        """Close database connection.

        Forces a WAL checkpoint before closing so all changes land in the
        main database file.
        """
        with self._lock:
            if self._conn is not None:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self._conn.close()
                self._conn = None
