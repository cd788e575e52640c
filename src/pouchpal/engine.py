"""PouchPal engine - orchestrates event store, queries, limits and sync."""

import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any

from .aggregation import QueryService
from .bridge import SyncBridge
from .constants import (
    DB_FILENAME,
    DEFAULT_HISTORY_DAYS,
    NOTIFY_DAILY_SUMMARY,
    SETTINGS_FILENAME,
    SHARED_DB_FILENAME,
    SOURCE_HOME_BUTTON,
    UNDO_WINDOW_SECONDS,
)
from .events import EventStore
from .limits import LimitConfig, LimitState
from .models import DayCount, DayGroup, Insights, LogEntry, MergeResult, UndoToken
from .notify import LimitTrigger, LoggingNotifier, Notifier, due_triggers, fire_triggers
from .settings import UserSettings, load_settings, save_settings
from .shared import SharedStore
from .timeutil import Clock, SystemClock

logger = logging.getLogger(__name__)


class PouchEngine:
    """Main entry point for logging and querying.

    Thread-safety: all mutations (logging, undo, deletes, retiming, merges,
    settings changes) are serialized behind one lock, so two concurrent logs
    can never race on the undo token. Reads go straight to the event store,
    which hands out consistent snapshots.

    The undo token lives only in this object; a new process starts with
    nothing to undo.
    """

    def __init__(
        self,
        data_dir: Path,
        shared_path: Path | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        settings: UserSettings | None = None,
    ):
        self.data_dir = data_dir
        self.clock: Clock = clock or SystemClock()
        self.notifier: Notifier = notifier or LoggingNotifier()

        self._lock = threading.RLock()
        self._settings_path = data_dir / SETTINGS_FILENAME
        self._settings = settings if settings is not None else load_settings(self._settings_path)
        self._undo: UndoToken | None = None
        self.last_triggers: list[LimitTrigger] = []

        self.event_store = EventStore(data_dir / DB_FILENAME, on_change=self._on_store_change)
        self.shared = SharedStore(shared_path or data_dir / SHARED_DB_FILENAME)

        # Query service: all read-only operations delegated here
        self._query = QueryService(
            get_store=lambda: self.event_store,
            get_clock=lambda: self.clock,
            get_limit_config=lambda: self.settings.limit_config,
        )
        self.bridge = SyncBridge(
            shared=self.shared,
            get_store=lambda: self.event_store,
            today_count=self._query.today_count,
            get_settings=lambda: self.settings,
            now=lambda: self.clock.now(),
        )

    def _on_store_change(self) -> None:
        # Bridge is created after the store; nothing to push during setup.
        bridge = getattr(self, "bridge", None)
        if bridge is not None:
            bridge.push_projection()

    # --- Lifecycle ---

    def activate(self) -> MergeResult:
        """Run on process activation: merge queued external logs, refresh the widget.

        Raises:
            StorageError: If the merge cannot write to the event store.
        """
        with self._lock:
            result = self.bridge.merge_pending()
            self.bridge.push_projection()
            return result

    def close(self) -> None:
        self.event_store.close()
        self.shared.close()

    # --- Settings ---

    @property
    def settings(self) -> UserSettings:
        return self._settings

    @property
    def limit_config(self) -> LimitConfig:
        return self._settings.limit_config

    def update_settings(self, **changes: Any) -> UserSettings:
        """Validate, persist and publish settings changes.

        Raises:
            ValueError: For unknown keys or invalid values.
            StorageError: If the settings file cannot be written.
        """
        with self._lock:
            new_settings = self._settings.updated(**changes)
            save_settings(new_settings, self._settings_path)
            self._settings = new_settings
            self.bridge.push_projection()
            self.sync_daily_summary()
            return new_settings

    def sync_daily_summary(self) -> None:
        """Schedule or cancel the daily summary to match settings."""
        s = self._settings
        if s.notifications_enabled and s.daily_summary_enabled:
            self.notifier.schedule_daily_summary(s.daily_summary_hour, s.daily_summary_minute)
        else:
            self.notifier.cancel(NOTIFY_DAILY_SUMMARY)

    # --- Logging & undo ---

    def log_event(
        self,
        quantity: int = 1,
        source: str = SOURCE_HOME_BUTTON,
        note: str | None = None,
        timestamp: datetime | None = None,
    ) -> LogEntry:
        """Log an entry, arm the undo token and evaluate limit notifications.

        Args:
            quantity: Units consumed (not validated; any integer is stored)
            source: Provenance tag
            note: Optional annotation
            timestamp: Backdated time (default: now)

        Raises:
            StorageError: If the entry cannot be persisted.
        """
        with self._lock:
            now = self.clock.now()
            previous = self._query.today_count()

            entry = LogEntry(
                timestamp=timestamp if timestamp is not None else now,
                quantity=quantity,
                source=source,
                note=note,
            )
            self.event_store.insert(entry)
            self._undo = UndoToken(event_id=entry.id, logged_at=now)

            current = self._query.today_count()
            self.last_triggers = due_triggers(previous, current, self._settings)
            fire_triggers(self.last_triggers, self.notifier)

            logger.debug(f"Logged {quantity} from {source} ({entry.id})")
            return entry

    @property
    def can_undo(self) -> bool:
        """True while the last log is inside the undo window."""
        token = self._undo
        if token is None:
            return False
        return (self.clock.now() - token.logged_at).total_seconds() < UNDO_WINDOW_SECONDS

    @property
    def undo_token(self) -> UndoToken | None:
        return self._undo

    def undo_last(self) -> bool:
        """Delete the last logged entry if still inside the undo window.

        Safe to call repeatedly; only the first call inside the window acts.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            if not self.can_undo:
                return False
            token = self._undo
            removed = self.event_store.delete(token.event_id)
            self._undo = None
            logger.info(f"Undid log {token.event_id}")
            return removed

    def delete_event(self, entry_id: str) -> bool:
        """Delete an entry by ID, disarming undo if it referenced the same entry.

        Returns:
            False if no such entry existed.
        """
        with self._lock:
            if self._undo is not None and self._undo.event_id == entry_id:
                self._undo = None
            return self.event_store.delete(entry_id)

    def update_event_timestamp(self, entry_id: str, timestamp: datetime) -> bool:
        """Retime an entry. Returns False if no such entry existed."""
        with self._lock:
            return self.event_store.update(entry_id, timestamp)

    def delete_all_events(self) -> int:
        """Remove every entry. Returns how many were removed."""
        with self._lock:
            self._undo = None
            removed = self.event_store.clear()
            logger.info(f"Deleted all {removed} entries")
            return removed

    def get_event(self, entry_id: str) -> LogEntry | None:
        return self.event_store.get(entry_id)

    def resolve_event_id(self, prefix: str) -> str | None:
        """Resolve a full ID or unique prefix to a full entry ID."""
        if self.event_store.get(prefix) is not None:
            return prefix
        matches = [e.id for e in self.event_store.query_all() if e.id.startswith(prefix)]
        return matches[0] if len(matches) == 1 else None

    # --- Queries (delegated to QueryService) ---

    def count_in_range(self, start: datetime, end: datetime) -> int:
        return self._query.count_in_range(start, end)

    def today_count(self) -> int:
        return self._query.today_count()

    def count_for_day(self, day: date | datetime) -> int:
        return self._query.count_for_day(day)

    def entries_for_day(self, day: date | datetime) -> list[LogEntry]:
        return self._query.entries_for_day(day)

    def daily_series(self, days: int) -> list[DayCount]:
        return self._query.daily_series(days)

    def average(self, days: int) -> float:
        return self._query.average(days)

    def weekly_average(self) -> float:
        return self._query.weekly_average()

    def monthly_average(self) -> float:
        return self._query.monthly_average()

    def all_time_total(self) -> int:
        return self._query.all_time_total()

    def all_events(self) -> list[LogEntry]:
        """Every entry, newest first."""
        return self.event_store.query_all(descending=True)

    def grouped_history(
        self, cutoff: datetime | None = None, days: int = DEFAULT_HISTORY_DAYS
    ) -> list[DayGroup]:
        """History grouped by day; cutoff defaults to `days` days before now."""
        if cutoff is None:
            cutoff = self._query.history_cutoff(days)
        return self._query.grouped_history(cutoff)

    def export_csv(self) -> str:
        return self._query.export_csv()

    def insights(self) -> Insights:
        return self._query.insights()

    # --- Limit state for today ---

    def progress_fraction(self, count: int | None = None) -> float:
        return self.limit_config.progress_fraction(self._count_or_today(count))

    def is_approaching(self, count: int | None = None) -> bool:
        return self.limit_config.is_approaching(self._count_or_today(count))

    def is_at_or_over_limit(self, count: int | None = None) -> bool:
        return self.limit_config.is_at_or_over_limit(self._count_or_today(count))

    def limit_state(self, count: int | None = None) -> LimitState:
        return self.limit_config.classify(self._count_or_today(count))

    def _count_or_today(self, count: int | None) -> int:
        return self.today_count() if count is None else count
