#!/usr/bin/env python3
"""Seed script to populate a pouchpal data directory with sample history.

Usage:
    POUCHPAL_PATH=/path/to/data python scripts/seed.py

    # Or with default path:
    python scripts/seed.py
"""

import os
import random
import sys
from datetime import datetime, time, timedelta
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pouchpal.engine import PouchEngine

NOTES = [None, None, None, "after coffee", "commute", "after lunch", "stressful meeting"]


def seed_history(engine: PouchEngine, days: int = 30) -> None:
    """Log a plausible month of pouches, tapering off toward today."""
    rng = random.Random(42)
    today = engine.clock.today()
    tz = engine.clock.tz

    for offset in range(days, 0, -1):
        day = today - timedelta(days=offset)
        per_day = max(0, rng.randint(6, 14) - (days - offset) // 6)
        for _ in range(per_day):
            at = datetime.combine(day, time(rng.randint(7, 22), rng.randint(0, 59)), tzinfo=tz)
            engine.log_event(
                quantity=1 if rng.random() < 0.9 else 2,
                source=rng.choice(["home_button", "home_button", "widget", "shortcut"]),
                note=rng.choice(NOTES),
                timestamp=at,
            )

    print(f"Added {days} days of history")


def seed_widget_queue(engine: PouchEngine) -> None:
    """Queue a couple of widget taps for the next activation to merge."""
    now = engine.clock.now()
    engine.shared.queue_external_log(quantity=1, now=now - timedelta(minutes=40))
    engine.shared.queue_external_log(quantity=1, now=now - timedelta(minutes=5))
    print("Queued 2 widget logs")


def main():
    data_path = Path(os.environ.get("POUCHPAL_PATH", Path.home() / ".pouchpal"))

    print(f"Seeding pouchpal data at: {data_path}")
    engine = PouchEngine(data_path)

    existing = engine.event_store.count()
    if existing > 0:
        print(f"Warning: store already has {existing} entries")
        response = input("Continue and add more? [y/N] ")
        if response.lower() != "y":
            print("Aborted")
            engine.close()
            return

    engine.update_settings(daily_limit_enabled=True, daily_limit_value=10, approach_threshold=0.8)
    seed_history(engine)
    seed_widget_queue(engine)

    print(f"\nFinal state: {engine.event_store.count()} entries, {engine.all_time_total()} total")
    print(f"Weekly average: {engine.weekly_average():.1f}")
    engine.close()


if __name__ == "__main__":
    main()
