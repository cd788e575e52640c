"""Clock, local-calendar and time-reference utilities.

All "today" computations go through a clock so that day boundaries can be
pinned in tests. Storage uses UTC; bucketing uses the clock's local zone.

Time references accepted by parse_time_reference:
- ISO format: "2025-01-15", "2025-01-15T14:30:00"
- Relative: "10 minutes ago", "2 hours ago", "3 days ago"
- Named: "now", "today", "yesterday"
"""

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Protocol

from dateutil import parser as dateparser
from dateutil import tz as dateutil_tz
from dateutil.relativedelta import relativedelta


class Clock(Protocol):
    """Capability providing wall-clock time and local day boundaries."""

    tz: tzinfo

    def now(self) -> datetime: ...

    def today(self) -> date: ...

    def local_date(self, value: date | datetime) -> date: ...

    def start_of_day(self, value: date | datetime) -> datetime: ...

    def day_bounds(self, value: date | datetime) -> tuple[datetime, datetime]: ...


def ensure_aware(dt: datetime) -> datetime:
    """Return dt with a timezone, assuming UTC for naive values."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_storage(dt: datetime) -> str:
    """Serialize a timestamp for SQLite.

    Fixed-width UTC strings sort lexicographically in time order, which the
    range queries rely on.
    """
    return ensure_aware(dt).astimezone(timezone.utc).isoformat(timespec="microseconds")


def to_storage_bound(dt: datetime) -> str:
    """Serialize a query bound, clamping instants outside the UTC range to its ends."""
    try:
        return to_storage(dt)
    except OverflowError:
        edge = datetime.max if dt.year > 1 else datetime.min
        return edge.replace(tzinfo=timezone.utc).isoformat(timespec="microseconds")


def from_storage(value: str) -> datetime:
    """Parse a timestamp written by to_storage."""
    return ensure_aware(datetime.fromisoformat(value))


def format_csv_timestamp(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2026-01-13T14:30:00.000Z."""
    utc = ensure_aware(dt).astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SystemClock:
    """Clock backed by the system time in a local zone."""

    def __init__(self, zone: tzinfo | None = None):
        self.tz = zone if zone is not None else dateutil_tz.tzlocal()

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def local_date(self, value: date | datetime) -> date:
        """Calendar date of value in this clock's zone."""
        if isinstance(value, datetime):
            try:
                return ensure_aware(value).astimezone(self.tz).date()
            except OverflowError:
                return date.max if value.year > 1 else date.min
        return value

    def start_of_day(self, value: date | datetime) -> datetime:
        """First instant of the local day containing value.

        Zones that skip midnight on a DST change resolve to the first
        instant that exists.
        """
        day = self.local_date(value)
        midnight = datetime.combine(day, time.min, tzinfo=self.tz)
        try:
            return dateutil_tz.resolve_imaginary(midnight)
        except OverflowError:
            # Too close to the ends of the calendar to round-trip through UTC
            return midnight

    def day_bounds(self, value: date | datetime) -> tuple[datetime, datetime]:
        """Half-open [start, end) of the local day containing value.

        The last representable day ends at datetime.max.
        """
        day = self.local_date(value)
        try:
            end = self.start_of_day(day + timedelta(days=1))
        except OverflowError:
            end = datetime.max.replace(tzinfo=self.tz)
        return self.start_of_day(day), end


class FixedClock(SystemClock):
    """Clock pinned to a settable instant.

    Used by tests and by scripted replays where "now" must not move.
    """

    def __init__(self, now: datetime, zone: tzinfo | None = None):
        super().__init__(zone if zone is not None else (now.tzinfo or timezone.utc))
        self._now = ensure_aware(now)

    def now(self) -> datetime:
        return self._now.astimezone(self.tz)

    def set(self, now: datetime) -> None:
        self._now = ensure_aware(now)

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward by a timedelta(**delta) and return the new now."""
        self._now = self._now + timedelta(**delta)
        return self.now()


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse human-friendly time references.

    Args:
        ref: Time reference string
        now: Reference point for relative times (default: local now).
             Naive results are placed in now's zone.

    Returns:
        Parsed timezone-aware datetime

    Raises:
        ValueError: If the reference cannot be parsed

    Examples:
        >>> parse_time_reference("2025-01-15")  # local midnight
        >>> parse_time_reference("15 minutes ago")
        >>> parse_time_reference("yesterday")
    """
    if now is None:
        now = datetime.now(dateutil_tz.tzlocal())
    now = ensure_aware(now)

    ref = ref.strip().lower()

    if ref == "now":
        return now
    if ref == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if ref == "yesterday":
        return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    ago_match = re.match(r"(\d+)\s*(second|minute|hour|day|week|month)s?\s*ago", ref)
    if ago_match:
        amount = int(ago_match.group(1))
        unit = ago_match.group(2)

        if unit == "second":
            return now - timedelta(seconds=amount)
        elif unit == "minute":
            return now - timedelta(minutes=amount)
        elif unit == "hour":
            return now - timedelta(hours=amount)
        elif unit == "day":
            return now - timedelta(days=amount)
        elif unit == "week":
            return now - timedelta(weeks=amount)
        elif unit == "month":
            return now - relativedelta(months=amount)

    try:
        parsed = dateparser.parse(ref)
        if parsed is None:
            raise ValueError(f"Cannot parse time reference: {ref}")

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=now.tzinfo)

        return parsed
    except (ValueError, OverflowError, dateparser.ParserError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a datetime as a human-readable relative string.

    Returns:
        Human-readable string like "just now", "5 minutes ago", "2 days ago"
    """
    from .constants import (
        SECONDS_PER_MINUTE,
        SECONDS_PER_HOUR,
        SECONDS_PER_DAY,
        SECONDS_PER_WEEK,
    )

    if now is None:
        now = datetime.now(timezone.utc)

    diff = ensure_aware(now) - ensure_aware(dt)

    if diff.total_seconds() < 0:
        return "in the future"

    seconds = int(diff.total_seconds())

    if seconds < SECONDS_PER_MINUTE:
        return "just now"
    elif seconds < SECONDS_PER_HOUR:
        minutes = seconds // SECONDS_PER_MINUTE
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    elif seconds < SECONDS_PER_DAY:
        hours = seconds // SECONDS_PER_HOUR
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    elif seconds < SECONDS_PER_WEEK:
        days = seconds // SECONDS_PER_DAY
        return f"{days} day{'s' if days != 1 else ''} ago"
    else:
        weeks = seconds // SECONDS_PER_WEEK
        return f"{weeks} week{'s' if weeks != 1 else ''} ago"
