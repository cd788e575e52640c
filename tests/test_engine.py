"""Tests for PouchEngine: logging, undo, notifications and settings."""

import threading
from datetime import date, datetime, timedelta

import pytest

from pouchpal.constants import (
    KEY_LAST_UPDATED,
    KEY_LIMIT_ENABLED,
    KEY_LIMIT_VALUE,
    KEY_TODAY_COUNT,
    NOTIFY_APPROACHING,
    NOTIFY_DAILY_SUMMARY,
    NOTIFY_LIMIT_REACHED,
)
from pouchpal.engine import PouchEngine
from pouchpal.errors import StorageError
from pouchpal.notify import LoggingNotifier
from pouchpal.settings import UserSettings

from conftest import LOCAL, NOW


# --- Logging & undo ---


def test_log_and_undo_last(engine, clock):
    """Undo inside the window removes only the most recent entry."""
    engine.log_event(quantity=2)
    clock.advance(seconds=1)
    engine.log_event(quantity=3)

    assert engine.today_count() == 5
    assert engine.undo_last() is True
    assert engine.today_count() == 2


def test_undo_twice_same_as_once(engine):
    engine.log_event(quantity=2)
    engine.log_event(quantity=1)

    assert engine.undo_last() is True
    after_once = [e.id for e in engine.all_events()]

    assert engine.undo_last() is False
    assert [e.id for e in engine.all_events()] == after_once
    assert engine.today_count() == 2


def test_log_defaults(engine):
    entry = engine.log_event()

    assert entry.quantity == 1
    assert entry.source == "home_button"
    assert entry.note is None
    assert entry.timestamp == NOW
    assert engine.get_event(entry.id) == entry


def test_undo_window_expires(engine, clock):
    engine.log_event()

    clock.advance(seconds=29.9)
    assert engine.can_undo is True

    clock.advance(seconds=0.1)
    assert engine.can_undo is False
    assert engine.undo_last() is False
    assert engine.today_count() == 1


def test_undo_with_nothing_logged(engine):
    assert engine.can_undo is False
    assert engine.undo_token is None
    assert engine.undo_last() is False


def test_new_log_replaces_undo_token(engine):
    first = engine.log_event()
    second = engine.log_event()

    assert engine.undo_token.event_id == second.id
    engine.undo_last()
    assert engine.get_event(first.id) is not None


def test_undo_backdated_entry(engine):
    """The window runs from when the log happened, not from its timestamp."""
    entry = engine.log_event(timestamp=NOW - timedelta(days=3))

    assert engine.can_undo is True
    assert engine.undo_last() is True
    assert engine.get_event(entry.id) is None


def test_undo_not_carried_across_processes(temp_data_dir, clock):
    first = PouchEngine(temp_data_dir, clock=clock, settings=UserSettings())
    first.log_event()
    first.close()

    second = PouchEngine(temp_data_dir, clock=clock, settings=UserSettings())
    assert second.can_undo is False
    assert second.today_count() == 1
    second.close()


def test_delete_tokened_entry_disarms_undo(engine):
    entry = engine.log_event()

    assert engine.delete_event(entry.id) is True
    assert engine.can_undo is False
    assert engine.undo_last() is False


def test_delete_other_entry_keeps_undo(engine):
    older = engine.log_event(timestamp=NOW - timedelta(hours=1))
    latest = engine.log_event()

    assert engine.delete_event(older.id) is True
    assert engine.undo_last() is True
    assert engine.get_event(latest.id) is None
    assert engine.all_events() == []


def test_delete_missing_entry(engine):
    assert engine.delete_event("missing") is False


def test_update_event_timestamp_moves_day(engine):
    entry = engine.log_event(quantity=2)

    assert engine.update_event_timestamp(entry.id, NOW - timedelta(days=1)) is True
    assert engine.today_count() == 0
    assert engine.count_for_day(NOW.date() - timedelta(days=1)) == 2
    assert engine.update_event_timestamp("missing", NOW) is False


def test_delete_all_events(engine):
    for _ in range(3):
        engine.log_event()

    assert engine.delete_all_events() == 3
    assert engine.all_events() == []
    assert engine.can_undo is False


def test_zero_and_negative_quantities_stored(engine):
    engine.log_event(quantity=3)
    engine.log_event(quantity=0)
    engine.log_event(quantity=-2)

    assert engine.today_count() == 1
    assert len(engine.all_events()) == 3


def test_resolve_event_id(engine):
    entry = engine.log_event()

    assert engine.resolve_event_id(entry.id) == entry.id
    assert engine.resolve_event_id(entry.id[:8]) == entry.id
    assert engine.resolve_event_id("zzzz") is None


def test_concurrent_logging(engine):
    """Concurrent logs are all persisted and the undo token points at one of them."""
    errors = []

    def worker():
        try:
            for _ in range(20):
                engine.log_event()
        except Exception as e:  # pragma: no cover - surfaced by the assert
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert engine.today_count() == 100
    assert engine.get_event(engine.undo_token.event_id) is not None


# --- Limit state ---


def test_limit_state_uses_today(limited_engine):
    assert limited_engine.limit_state() == "under"
    limited_engine.log_event(quantity=8)
    assert limited_engine.limit_state() == "approaching"
    assert limited_engine.is_approaching() is True
    assert limited_engine.progress_fraction() == 0.8
    limited_engine.log_event(quantity=2)
    assert limited_engine.is_at_or_over_limit() is True
    assert limited_engine.limit_state(3) == "under"


def test_limit_state_disabled(engine):
    engine.log_event(quantity=50)
    assert engine.limit_state() == "disabled"
    assert engine.progress_fraction() == 0.0


# --- Notifications ---


def test_approaching_fires_once_when_entering_band(limited_engine, notifier):
    limited_engine.log_event(quantity=7)
    assert limited_engine.last_triggers == []

    limited_engine.log_event()  # 8
    assert [t.kind for t in limited_engine.last_triggers] == ["approachingLimit"]
    assert notifier.pending[NOTIFY_APPROACHING] == {"count": 8, "limit": 10}

    limited_engine.log_event()  # 9, still approaching
    assert limited_engine.last_triggers == []


def test_limit_reached_fires_on_exact_count(limited_engine, notifier):
    limited_engine.log_event(quantity=9)
    limited_engine.log_event()  # 10

    assert [t.kind for t in limited_engine.last_triggers] == ["limitReached"]
    assert notifier.pending[NOTIFY_LIMIT_REACHED] == {"limit": 10}

    limited_engine.log_event()  # 11
    assert limited_engine.last_triggers == []


def test_jumping_past_limit_fires_nothing(limited_engine, notifier):
    limited_engine.log_event(quantity=12)

    assert limited_engine.last_triggers == []
    assert notifier.pending == {}


def test_backdated_log_does_not_trigger(limited_engine):
    limited_engine.log_event(quantity=10, timestamp=NOW - timedelta(days=1))
    assert limited_engine.last_triggers == []


def test_backdated_log_at_limit_does_not_repeat(limited_engine, notifier):
    limited_engine.log_event(quantity=10)
    notifier.pending.clear()

    limited_engine.log_event(timestamp=NOW - timedelta(days=1))

    assert limited_engine.last_triggers == []
    assert notifier.pending == {}


def test_zero_quantity_at_limit_does_not_repeat(limited_engine, notifier):
    limited_engine.log_event(quantity=10)
    notifier.pending.clear()

    limited_engine.log_event(quantity=0)

    assert limited_engine.today_count() == 10
    assert limited_engine.last_triggers == []
    assert notifier.pending == {}


def test_limit_reached_again_after_dropping_below(limited_engine, clock):
    limited_engine.log_event(quantity=10)
    clock.advance(minutes=1)
    limited_engine.log_event(quantity=-1)  # 9
    limited_engine.log_event()  # 10 again

    assert [t.kind for t in limited_engine.last_triggers] == ["limitReached"]


def test_no_triggers_when_notifications_off(temp_data_dir, clock, notifier):
    settings = UserSettings(daily_limit_enabled=True, daily_limit_value=10)
    eng = PouchEngine(temp_data_dir, clock=clock, notifier=notifier, settings=settings)

    eng.log_event(quantity=8)
    eng.log_event(quantity=2)

    assert notifier.pending == {}
    eng.close()


def test_failing_notifier_does_not_fail_log(temp_data_dir, clock):
    class BrokenNotifier(LoggingNotifier):
        def schedule_approaching(self, current_count, limit):
            raise RuntimeError("no permission")

    settings = UserSettings(
        daily_limit_enabled=True,
        notifications_enabled=True,
        approaching_limit_notification=True,
    )
    eng = PouchEngine(temp_data_dir, clock=clock, notifier=BrokenNotifier(), settings=settings)

    entry = eng.log_event(quantity=8)

    assert eng.get_event(entry.id) is not None
    assert eng.today_count() == 8
    eng.close()


def test_daily_summary_follows_settings(engine, notifier):
    engine.update_settings(notifications_enabled=True, daily_summary_enabled=True)
    assert notifier.pending[NOTIFY_DAILY_SUMMARY] == {"hour": 20, "minute": 0}

    engine.update_settings(daily_summary_hour=7, daily_summary_minute=30)
    assert notifier.pending[NOTIFY_DAILY_SUMMARY] == {"hour": 7, "minute": 30}

    engine.update_settings(daily_summary_enabled=False)
    assert NOTIFY_DAILY_SUMMARY not in notifier.pending


# --- Settings ---


def test_update_settings_persists(engine, temp_data_dir, clock):
    engine.update_settings(daily_limit_enabled=True, daily_limit_value=6)

    reopened = PouchEngine(temp_data_dir, clock=clock)
    assert reopened.settings.daily_limit_enabled is True
    assert reopened.settings.daily_limit_value == 6
    reopened.close()


def test_update_settings_pushes_to_shared(engine, clock):
    engine.log_event(quantity=3)
    engine.shared.remove(KEY_TODAY_COUNT)
    engine.shared.remove(KEY_LAST_UPDATED)
    later = clock.advance(minutes=5)

    engine.update_settings(daily_limit_enabled=True, daily_limit_value=6)

    assert engine.shared.get(KEY_LIMIT_ENABLED) is True
    assert engine.shared.get(KEY_LIMIT_VALUE) == 6
    assert engine.shared.get(KEY_TODAY_COUNT) == 3
    assert engine.shared.get(KEY_LAST_UPDATED) == later.isoformat()


def test_update_settings_rejects_unknown_key(engine):
    with pytest.raises(ValueError, match="Unknown setting"):
        engine.update_settings(colour="blue")
    assert engine.settings == UserSettings()


def test_update_settings_rejects_invalid_value(engine):
    with pytest.raises(ValueError):
        engine.update_settings(approach_threshold=2.0)
    assert engine.settings.approach_threshold == 0.8


def test_log_updates_widget_projection(engine):
    engine.log_event(quantity=2)
    assert engine.shared.get(KEY_TODAY_COUNT) == 2

    engine.undo_last()
    assert engine.shared.get(KEY_TODAY_COUNT) == 0


# --- Far-future timestamps ---


def test_unstorable_timestamp_raises_storage_error(engine):
    # 23:00 at UTC-5 on the last calendar day is past the end of UTC
    edge = datetime(9999, 12, 31, 23, 0, tzinfo=LOCAL)

    with pytest.raises(StorageError):
        engine.log_event(timestamp=edge)

    assert engine.all_events() == []
    assert engine.can_undo is False


def test_far_future_log_is_counted(engine):
    engine.log_event(quantity=2, timestamp=datetime(9999, 12, 31, 12, 0, tzinfo=LOCAL))

    assert engine.count_for_day(date(9999, 12, 31)) == 2
    assert engine.all_time_total() == 2


def test_retime_to_unstorable_timestamp(engine):
    entry = engine.log_event()

    with pytest.raises(StorageError):
        engine.update_event_timestamp(entry.id, datetime(9999, 12, 31, 23, 0, tzinfo=LOCAL))
    assert engine.get_event(entry.id).timestamp == NOW
