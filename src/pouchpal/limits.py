"""Daily limit classification.

Pure functions of (count, config). When a limit is enabled every count falls
in exactly one of: under, approaching, at_or_over. Approaching is strictly
below the limit, so it never overlaps at_or_over.
"""

from typing import Literal

from pydantic import BaseModel, Field

from .constants import DEFAULT_APPROACH_THRESHOLD, DEFAULT_DAILY_LIMIT

LimitState = Literal[
    "disabled",    # no limit configured
    "under",       # below the approach threshold
    "approaching", # at/over the threshold but below the limit
    "at_or_over",  # count >= limit
]


class LimitConfig(BaseModel):
    """Daily limit settings consumed by the classifiers."""

    enabled: bool = False
    limit: int = DEFAULT_DAILY_LIMIT
    approach_threshold: float = Field(default=DEFAULT_APPROACH_THRESHOLD, ge=0.0, le=1.0)

    def progress_fraction(self, count: int) -> float:
        return progress_fraction(count, self)

    def is_approaching(self, count: int) -> bool:
        return is_approaching(count, self)

    def is_at_or_over_limit(self, count: int) -> bool:
        return is_at_or_over_limit(count, self)

    def classify(self, count: int) -> LimitState:
        return classify(count, self)


def progress_fraction(count: int, config: LimitConfig) -> float:
    """Fraction of the limit used, capped at 1.0. 0 when there is no usable limit."""
    if not config.enabled or config.limit <= 0:
        return 0.0
    return min(count / config.limit, 1.0)


def is_approaching(count: int, config: LimitConfig) -> bool:
    if not config.enabled:
        return False
    return progress_fraction(count, config) >= config.approach_threshold and count < config.limit


def is_at_or_over_limit(count: int, config: LimitConfig) -> bool:
    if not config.enabled:
        return False
    return count >= config.limit


def classify(count: int, config: LimitConfig) -> LimitState:
    if not config.enabled:
        return "disabled"
    if is_at_or_over_limit(count, config):
        return "at_or_over"
    if is_approaching(count, config):
        return "approaching"
    return "under"
