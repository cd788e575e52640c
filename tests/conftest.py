"""Shared test fixtures and helpers for pouchpal tests."""

import tempfile
from datetime import datetime
from pathlib import Path

import pytest
from dateutil import tz

from pouchpal.engine import PouchEngine
from pouchpal.notify import LoggingNotifier
from pouchpal.settings import UserSettings
from pouchpal.timeutil import FixedClock

# Fixed-offset zone so day boundaries never depend on the host machine.
LOCAL = tz.tzoffset("TEST", -5 * 3600)

# Tuesday 10 March 2026, 14:00 local
NOW = datetime(2026, 3, 10, 14, 0, 0, tzinfo=LOCAL)


# --- Fixtures ---


@pytest.fixture
def temp_data_dir():
    """Provide a temporary data directory, cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    """A clock pinned to NOW in the LOCAL zone."""
    return FixedClock(NOW, zone=LOCAL)


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def engine(temp_data_dir, clock, notifier):
    """Provide a fresh PouchEngine with default settings and a fixed clock."""
    eng = PouchEngine(temp_data_dir, clock=clock, notifier=notifier, settings=UserSettings())
    yield eng
    eng.close()


@pytest.fixture
def limited_engine(temp_data_dir, clock, notifier):
    """Engine with a limit of 10, threshold 0.8 and limit notifications on."""
    settings = UserSettings(
        daily_limit_enabled=True,
        daily_limit_value=10,
        approach_threshold=0.8,
        notifications_enabled=True,
        approaching_limit_notification=True,
        limit_reached_notification=True,
    )
    eng = PouchEngine(temp_data_dir, clock=clock, notifier=notifier, settings=settings)
    yield eng
    eng.close()

