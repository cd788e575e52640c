"""Read-only derivations over the event store.

Nothing here is cached: every call re-reads the store and asks the clock for
"now", so results always reflect the current day. PouchEngine delegates its
query methods here via thin wrappers.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable

from .constants import CSV_HEADER, MONTH_DAYS, WEEK_DAYS
from .events import EventStore
from .limits import LimitConfig
from .models import DayCount, DayGroup, Insights, LogEntry
from .timeutil import Clock, format_csv_timestamp

logger = logging.getLogger(__name__)


def _csv_field(value: str) -> str:
    """Quote a field only when it needs it."""
    if any(ch in value for ch in ',"\r\n'):
        return '"' + value.replace('"', '""') + '"'
    return value


def _csv_note(value: str) -> str:
    """Notes are always quoted; embedded quotes are doubled."""
    return '"' + value.replace('"', '""') + '"'


def sum_quantity(entries: list[LogEntry]) -> int:
    return sum(e.quantity for e in entries)


class QueryService:
    """Day-bucketed counts, windows, averages, history and export.

    Uses callable accessors so the current store, clock and limit are read
    at call time, never stale copies.
    """

    def __init__(
        self,
        get_store: Callable[[], EventStore],
        get_clock: Callable[[], Clock],
        get_limit_config: Callable[[], LimitConfig] | None = None,
    ):
        self._get_store = get_store
        self._get_clock = get_clock
        self._get_limit_config = get_limit_config or LimitConfig

    # --- Counts ---

    def count_in_range(self, start: datetime, end: datetime) -> int:
        """Sum of quantity over entries in [start, end)."""
        return sum_quantity(self._get_store().query_by_range(start, end))

    def count_for_day(self, day: date | datetime) -> int:
        """Total for one local calendar day. Past, today and future alike."""
        start, end = self._get_clock().day_bounds(day)
        return self.count_in_range(start, end)

    def today_count(self) -> int:
        clock = self._get_clock()
        return self.count_for_day(clock.today())

    def entries_for_day(self, day: date | datetime) -> list[LogEntry]:
        """Entries on one local day, newest first."""
        start, end = self._get_clock().day_bounds(day)
        entries = self._get_store().query_by_range(start, end)
        return sorted(entries, key=lambda e: (e.timestamp, e.id), reverse=True)

    def all_time_total(self) -> int:
        return self._get_store().total_quantity()

    # --- Windows ---

    def daily_series(self, days: int) -> list[DayCount]:
        """One DayCount per day for [today - (days-1), today], oldest first.

        Raises:
            ValueError: If days < 1.
        """
        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")

        clock = self._get_clock()
        today = clock.today()
        first = today - timedelta(days=days - 1)
        start = clock.start_of_day(first)
        end = clock.start_of_day(today + timedelta(days=1))

        # One range read, bucketed locally.
        totals: dict[date, int] = defaultdict(int)
        for entry in self._get_store().query_by_range(start, end):
            totals[clock.local_date(entry.timestamp)] += entry.quantity

        window = [first + timedelta(days=offset) for offset in range(days)]
        return [DayCount(day=day, count=totals[day]) for day in window]

    def weekly_series(self) -> list[DayCount]:
        return self.daily_series(WEEK_DAYS)

    def monthly_series(self) -> list[DayCount]:
        return self.daily_series(MONTH_DAYS)

    def average(self, days: int) -> float:
        """Mean per day over the window. Empty days count toward the denominator."""
        series = self.daily_series(days)
        return sum(d.count for d in series) / days

    def weekly_average(self) -> float:
        return self.average(WEEK_DAYS)

    def monthly_average(self) -> float:
        return self.average(MONTH_DAYS)

    # --- History ---

    def history_cutoff(self, days: int) -> datetime:
        """Instant `days` days before now."""
        return self._get_clock().now() - timedelta(days=days)

    def grouped_history(self, cutoff: datetime) -> list[DayGroup]:
        """Entries at or after cutoff, grouped by local day.

        Days are newest first; entries inside a day are newest first.
        """
        clock = self._get_clock()
        groups: dict[date, list[LogEntry]] = defaultdict(list)
        # query_since returns newest first, so each bucket stays newest first
        for entry in self._get_store().query_since(cutoff):
            groups[clock.local_date(entry.timestamp)].append(entry)

        return [
            DayGroup(day=day, total=sum_quantity(groups[day]), entries=groups[day])
            for day in sorted(groups, reverse=True)
        ]

    # --- Export ---

    def export_csv(self) -> str:
        """CSV of every entry, oldest first.

        Display order everywhere else is newest first; export is the reverse.
        """
        lines = [CSV_HEADER]
        for entry in self._get_store().query_all(descending=False):
            lines.append(
                ",".join(
                    [
                        format_csv_timestamp(entry.timestamp),
                        str(entry.quantity),
                        _csv_field(entry.source or ""),
                        _csv_note(entry.note or ""),
                    ]
                )
            )
        return "\n".join(lines) + "\n"

    # --- Insights ---

    def insights(self) -> Insights:
        """Statistics for the last 7 and 30 days."""
        weekly = self.weekly_series()
        monthly = self.monthly_series()
        monthly_counts = [d.count for d in monthly]
        nonzero = [c for c in monthly_counts if c > 0]

        config = self._get_limit_config()
        days_under_limit = (
            sum(1 for d in weekly if d.count <= config.limit) if config.enabled else 0
        )

        return Insights(
            weekly=weekly,
            monthly=monthly,
            weekly_average=sum(d.count for d in weekly) / WEEK_DAYS,
            monthly_average=sum(monthly_counts) / MONTH_DAYS,
            monthly_total=sum(monthly_counts),
            all_time_total=self.all_time_total(),
            highest_day=max(monthly_counts),
            lowest_day=min(nonzero) if nonzero else 0,
            days_under_limit=days_under_limit,
        )
