"""Notification triggers and the notifier interface.

The core decides *when* a notification is due; delivery belongs to whatever
Notifier the host injects. Triggers are evaluated only right after a log.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from pydantic import BaseModel

from .constants import NOTIFY_APPROACHING, NOTIFY_DAILY_SUMMARY, NOTIFY_LIMIT_REACHED
from .settings import UserSettings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivery side of notifications."""

    def schedule_approaching(self, current_count: int, limit: int) -> None: ...

    def schedule_limit_reached(self, limit: int) -> None: ...

    def schedule_daily_summary(self, hour: int, minute: int) -> None: ...

    def cancel(self, identifier: str) -> None: ...


class LimitTrigger(BaseModel):
    """A notification that became due after a log."""

    kind: Literal["approachingLimit", "limitReached"]
    count: int
    limit: int


class LoggingNotifier:
    """Notifier that logs each request and keeps the pending set.

    Scheduling an identifier replaces any earlier request with the same
    identifier.
    """

    def __init__(self):
        self.pending: dict[str, dict] = {}

    def schedule_approaching(self, current_count: int, limit: int) -> None:
        self.pending[NOTIFY_APPROACHING] = {"count": current_count, "limit": limit}
        logger.info(f"Approaching daily limit: {current_count} of {limit}")

    def schedule_limit_reached(self, limit: int) -> None:
        self.pending[NOTIFY_LIMIT_REACHED] = {"limit": limit}
        logger.info(f"Daily limit of {limit} reached")

    def schedule_daily_summary(self, hour: int, minute: int) -> None:
        self.pending[NOTIFY_DAILY_SUMMARY] = {"hour": hour, "minute": minute}
        logger.info(f"Daily summary scheduled at {hour:02d}:{minute:02d}")

    def cancel(self, identifier: str) -> None:
        if self.pending.pop(identifier, None) is not None:
            logger.info(f"Cancelled notification {identifier}")


def due_triggers(previous: int, current: int, settings: UserSettings) -> list[LimitTrigger]:
    """Work out which limit notifications a log from previous to current makes due.

    - approaching: the count moved into the approaching band
    - limit reached: the count became exactly the limit
    """
    if not (settings.daily_limit_enabled and settings.notifications_enabled):
        return []

    config = settings.limit_config
    triggers: list[LimitTrigger] = []

    if (
        settings.approaching_limit_notification
        and config.is_approaching(current)
        and not config.is_approaching(previous)
    ):
        triggers.append(LimitTrigger(kind="approachingLimit", count=current, limit=config.limit))

    if (
        settings.limit_reached_notification
        and current == config.limit
        and previous != config.limit
    ):
        triggers.append(LimitTrigger(kind="limitReached", count=current, limit=config.limit))

    return triggers


def fire_triggers(triggers: list[LimitTrigger], notifier: Notifier) -> None:
    """Hand due triggers to the notifier."""
    for trigger in triggers:
        try:
            if trigger.kind == "approachingLimit":
                notifier.schedule_approaching(trigger.count, trigger.limit)
            else:
                notifier.schedule_limit_reached(trigger.limit)
        except Exception as e:
            # The log is already committed; a delivery failure must not undo it.
            logger.warning(f"Notifier failed for {trigger.kind}: {e}")
