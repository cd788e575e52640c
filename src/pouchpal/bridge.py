"""Cross-process sync bridge.

Outbound: after store mutations and settings changes, mirror today's count
and the limit settings into the shared store for the widget. Best-effort:
a failed push is logged and never fails the mutation that caused it.

Inbound: fold the widget's pending-log queue into the event store. Each queued
entry is validated on its own; malformed ones are skipped, the rest inserted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .constants import (
    KEY_LAST_UPDATED,
    KEY_LIMIT_ENABLED,
    KEY_LIMIT_VALUE,
    KEY_TODAY_COUNT,
    KEY_UNIT_PLURAL,
    KEY_UNIT_SINGULAR,
)
from .errors import MalformedQueueEntry, StorageError
from .events import EventStore
from .models import LogEntry, MergeResult, parse_pending_log
from .settings import UserSettings
from .shared import SharedStore

logger = logging.getLogger(__name__)


def settings_projection(settings: UserSettings) -> dict:
    """Shared-store values derived from settings."""
    return {
        KEY_LIMIT_ENABLED: settings.daily_limit_enabled,
        KEY_LIMIT_VALUE: settings.daily_limit_value,
        KEY_UNIT_SINGULAR: settings.unit_label_singular,
        KEY_UNIT_PLURAL: settings.unit_label_plural,
    }


class SyncBridge:
    """Pushes the widget projection out and merges pending logs in."""

    def __init__(
        self,
        shared: SharedStore,
        get_store: Callable[[], EventStore],
        today_count: Callable[[], int],
        get_settings: Callable[[], UserSettings],
        now: Callable[[], datetime],
    ):
        self.shared = shared
        self._get_store = get_store
        self._today_count = today_count
        self._get_settings = get_settings
        self._now = now

    # --- Outbound ---

    def push_projection(self) -> bool:
        """Write today's count, timestamp and limit settings.

        Returns:
            True if the shared store was updated.
        """
        try:
            values = {
                KEY_TODAY_COUNT: self._today_count(),
                KEY_LAST_UPDATED: self._now().isoformat(),
                **settings_projection(self._get_settings()),
            }
            self.shared.set_many(values)
            return True
        except StorageError as e:
            logger.warning(f"Widget projection not updated: {e}")
            return False

    # --- Inbound ---

    def merge_pending(self) -> MergeResult:
        """Insert queued external logs into the event store, then drop them.

        Only the entries that were read are removed from the queue, so logs
        queued while the merge runs wait for the next activation.

        Raises:
            StorageError: If the event store insert or queue update fails.
                Nothing is removed from the queue in that case.
        """
        raw = self.shared.read_pending()
        if raw is None:
            return MergeResult()

        if not isinstance(raw, list):
            logger.warning(f"Dropping pending queue of type {type(raw).__name__}")
            self.shared.consume_pending(0)
            return MergeResult()

        if not raw:
            self.shared.consume_pending(0)
            return MergeResult()

        entries: list[LogEntry] = []
        skipped = 0
        for index, item in enumerate(raw):
            try:
                entries.append(parse_pending_log(item, index))
            except MalformedQueueEntry as e:
                skipped += 1
                logger.warning(f"Skipping queued log: {e}")

        inserted = self._get_store().insert_many(entries)
        self.shared.consume_pending(len(raw))

        logger.info(f"Merged {len(inserted)} pending logs ({skipped} skipped)")
        return MergeResult(inserted=inserted, skipped=skipped)
