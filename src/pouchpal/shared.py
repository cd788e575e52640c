"""Shared key-value store read by the widget process.

A small SQLite table of JSON-encoded values. Each read-modify-write runs in
one BEGIN IMMEDIATE transaction, which makes it a critical section across
processes as well as threads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .constants import (
    DEFAULT_UNIT_PLURAL,
    KEY_LAST_UPDATED,
    KEY_LIMIT_ENABLED,
    KEY_LIMIT_VALUE,
    KEY_PENDING_LOGS,
    KEY_TODAY_COUNT,
    KEY_UNIT_PLURAL,
    SOURCE_WIDGET,
    SQLITE_TIMEOUT_SECONDS,
)
from .errors import StorageError
from .models import WidgetSnapshot

logger = logging.getLogger(__name__)


class SharedStore:
    """Key-value store shared between the app and its widget/extension."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._transaction() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS shared_values (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
        except OSError as e:
            raise StorageError(f"Cannot open shared store at {db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            # Autocommit mode; transactions are opened explicitly.
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=SQLITE_TIMEOUT_SECONDS,
                isolation_level=None,
                check_same_thread=False,
            )
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                conn = self._get_conn()
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot lock shared store {self.db_path}: {e}") from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Shared store write failed: {e}") from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @staticmethod
    def _get(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
        row = conn.execute("SELECT value FROM shared_values WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Ignoring undecodable shared value for {key!r}")
            return default

    @staticmethod
    def _set(conn: sqlite3.Connection, key: str, value: Any) -> None:
        conn.execute(
            """
            INSERT INTO shared_values (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, json.dumps(value)),
        )

    # --- Plain access ---

    def get(self, key: str, default: Any = None) -> Any:
        with self._transaction() as conn:
            return self._get(conn, key, default)

    def set_many(self, values: dict[str, Any]) -> None:
        """Write several keys atomically."""
        with self._transaction() as conn:
            for key, value in values.items():
                self._set(conn, key, value)

    def remove(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM shared_values WHERE key = ?", (key,))

    # --- Pending queue ---

    def read_pending(self) -> Any:
        """Return the raw pending queue value (None when absent)."""
        return self.get(KEY_PENDING_LOGS)

    def consume_pending(self, count: int) -> None:
        """Drop the first `count` queued entries.

        Entries appended after the queue was read survive. The key is
        removed once nothing is left.
        """
        with self._transaction() as conn:
            queue = self._get(conn, KEY_PENDING_LOGS)
            remaining = queue[count:] if isinstance(queue, list) else []
            if remaining:
                self._set(conn, KEY_PENDING_LOGS, remaining)
            else:
                conn.execute("DELETE FROM shared_values WHERE key = ?", (KEY_PENDING_LOGS,))

    def queue_external_log(
        self,
        quantity: int = 1,
        source: str = SOURCE_WIDGET,
        now: datetime | None = None,
    ) -> int:
        """Record a log from a process that cannot reach the event store.

        Bumps the displayed count optimistically and appends to the pending
        queue; the app folds the queue in on its next activation.

        Returns:
            The optimistic today count now shown by the widget.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._transaction() as conn:
            current = self._get(conn, KEY_TODAY_COUNT, 0)
            new_count = (current if isinstance(current, int) else 0) + quantity
            queue = self._get(conn, KEY_PENDING_LOGS)
            if not isinstance(queue, list):
                queue = []
            queue.append({"timestamp": now.timestamp(), "quantity": quantity, "source": source})
            self._set(conn, KEY_TODAY_COUNT, new_count)
            self._set(conn, KEY_LAST_UPDATED, now.isoformat())
            self._set(conn, KEY_PENDING_LOGS, queue)
        return new_count

    def read_widget_snapshot(self) -> WidgetSnapshot:
        """What the widget displays, built from the projection keys only."""
        with self._transaction() as conn:
            count = self._get(conn, KEY_TODAY_COUNT, 0)
            enabled = self._get(conn, KEY_LIMIT_ENABLED, False)
            limit = self._get(conn, KEY_LIMIT_VALUE, 0)
            label = self._get(conn, KEY_UNIT_PLURAL, DEFAULT_UNIT_PLURAL)
            updated = self._get(conn, KEY_LAST_UPDATED)

        last_updated = None
        if isinstance(updated, str):
            try:
                last_updated = datetime.fromisoformat(updated)
            except ValueError:
                logger.warning(f"Ignoring malformed {KEY_LAST_UPDATED}: {updated!r}")

        return WidgetSnapshot(
            today_count=count if isinstance(count, int) else 0,
            daily_limit=limit if enabled is True and isinstance(limit, int) else None,
            unit_label=label if isinstance(label, str) else DEFAULT_UNIT_PLURAL,
            last_updated=last_updated,
        )

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
