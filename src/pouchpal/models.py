"""Core data models for pouchpal.

Uses Pydantic v2 for validation, UUID4 strings for entry IDs.
"""

import math
import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_UNIT_PLURAL
from .errors import MalformedQueueEntry
from .timeutil import ensure_aware


def generate_id() -> str:
    """Generate a UUID4 string identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class LogEntry(BaseModel):
    """One logged consumption record.

    Quantity is expected to be >= 1 but is not enforced; every aggregate
    is plain integer arithmetic over whatever was stored.
    """

    id: str = Field(default_factory=generate_id)
    timestamp: datetime = Field(default_factory=utc_now)
    quantity: int = 1
    source: str | None = None  # provenance only: "home_button", "widget", ...
    note: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    def to_summary(self) -> dict:
        """Return a compact, JSON-ready view of this entry."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "quantity": self.quantity,
            "source": self.source,
            "note": self.note,
        }


class UndoToken(BaseModel):
    """Reference to the most recently logged entry. Never persisted."""

    event_id: str
    logged_at: datetime


class DayCount(BaseModel):
    """Total quantity logged on one calendar day."""

    day: date
    count: int


class DayGroup(BaseModel):
    """A day bucket: its total and its entries, newest first."""

    day: date
    total: int
    entries: list[LogEntry] = Field(default_factory=list)


class Insights(BaseModel):
    """Weekly and monthly statistics shown on the insights screen."""

    weekly: list[DayCount]
    monthly: list[DayCount]
    weekly_average: float
    monthly_average: float
    monthly_total: int
    all_time_total: int
    highest_day: int
    lowest_day: int  # lowest non-zero day in the 30-day window, 0 if none
    days_under_limit: int  # 7-day window, 0 when no limit is set


class PendingLog(BaseModel):
    """An entry queued by a process that cannot reach the event store.

    Strict: numbers must be numbers and booleans are not integers.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    timestamp: int | float  # seconds since the Unix epoch
    quantity: int
    source: str

    @field_validator("timestamp", "quantity", mode="before")
    @classmethod
    def _reject_bool(cls, v):
        if isinstance(v, bool):
            raise ValueError("boolean is not a number")
        return v

    @field_validator("timestamp")
    @classmethod
    def _finite_timestamp(cls, v: int | float) -> int | float:
        if not math.isfinite(v):
            raise ValueError("timestamp must be finite")
        return v

    def to_entry(self) -> LogEntry:
        return LogEntry(
            timestamp=datetime.fromtimestamp(self.timestamp, tz=timezone.utc),
            quantity=self.quantity,
            source=self.source,
        )


def parse_pending_log(raw: object, index: int = 0) -> LogEntry:
    """Validate one raw queue entry and build the LogEntry it describes.

    Raises:
        MalformedQueueEntry: If a field is missing, mistyped or out of range.
    """
    if not isinstance(raw, dict):
        raise MalformedQueueEntry(index, f"expected an object, got {type(raw).__name__}")
    try:
        return PendingLog.model_validate(raw).to_entry()
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise MalformedQueueEntry(index, str(e)) from e
    except (OverflowError, OSError) as e:
        raise MalformedQueueEntry(index, f"timestamp out of range: {e}") from e


class MergeResult(BaseModel):
    """Outcome of folding the pending queue into the event store."""

    inserted: list[str] = Field(default_factory=list)  # new entry IDs
    skipped: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)


class WidgetSnapshot(BaseModel):
    """What a widget renders, read from the shared store only."""

    today_count: int = 0
    daily_limit: int | None = None
    unit_label: str = DEFAULT_UNIT_PLURAL
    last_updated: datetime | None = None

    @property
    def progress(self) -> float:
        if self.daily_limit is None or self.daily_limit <= 0:
            return 0.0
        return min(self.today_count / self.daily_limit, 1.0)

    @property
    def is_over_limit(self) -> bool:
        if self.daily_limit is None:
            return False
        return self.today_count >= self.daily_limit
