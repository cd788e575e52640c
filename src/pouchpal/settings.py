"""User settings loader.

Reads settings from <data>/settings.yaml or falls back to defaults.

Settings file format:
```
daily_limit_enabled: true
daily_limit_value: 12
approach_threshold: 0.75
notifications_enabled: true
```
Unknown keys are ignored; known keys are validated.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import (
    DEFAULT_APPROACH_THRESHOLD,
    DEFAULT_DAILY_LIMIT,
    DEFAULT_SUMMARY_HOUR,
    DEFAULT_SUMMARY_MINUTE,
    DEFAULT_UNIT_PLURAL,
    DEFAULT_UNIT_SINGULAR,
)
from .errors import StorageError
from .limits import LimitConfig

logger = logging.getLogger(__name__)


class UserSettings(BaseModel):
    """Preferences that shape limits, labels and notifications."""

    has_completed_onboarding: bool = False

    # Limit
    daily_limit_enabled: bool = False
    daily_limit_value: int = DEFAULT_DAILY_LIMIT
    approach_threshold: float = Field(default=DEFAULT_APPROACH_THRESHOLD, ge=0.0, le=1.0)

    # Labels
    unit_label_singular: str = DEFAULT_UNIT_SINGULAR
    unit_label_plural: str = DEFAULT_UNIT_PLURAL
    strength_mg: int | None = None

    # Notifications
    notifications_enabled: bool = False
    approaching_limit_notification: bool = False
    limit_reached_notification: bool = False
    daily_summary_enabled: bool = False
    daily_summary_hour: int = Field(default=DEFAULT_SUMMARY_HOUR, ge=0, le=23)
    daily_summary_minute: int = Field(default=DEFAULT_SUMMARY_MINUTE, ge=0, le=59)

    @property
    def limit_config(self) -> LimitConfig:
        return LimitConfig(
            enabled=self.daily_limit_enabled,
            limit=self.daily_limit_value,
            approach_threshold=self.approach_threshold,
        )

    def unit_label(self, count: int) -> str:
        return self.unit_label_singular if count == 1 else self.unit_label_plural

    def updated(self, **changes: Any) -> "UserSettings":
        """Return a validated copy with changes applied.

        Raises:
            ValueError: For unknown keys.
            pydantic.ValidationError: For invalid values.
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        return UserSettings.model_validate({**self.model_dump(), **changes})


def load_settings(path: Path) -> UserSettings:
    """Load settings from a YAML file.

    Missing, unreadable or invalid files fall back to defaults with a
    warning so a bad edit never locks the user out of their log.
    """
    if not path.exists():
        return UserSettings()

    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Cannot read settings from {path}: {e}; using defaults")
        return UserSettings()

    if not isinstance(raw, dict):
        logger.warning(f"Settings file {path} is not a mapping; using defaults")
        return UserSettings()

    known = {k: v for k, v in raw.items() if k in UserSettings.model_fields}
    try:
        return UserSettings.model_validate(known)
    except ValidationError as e:
        logger.warning(f"Invalid settings in {path}: {e}; using defaults")
        return UserSettings()


def save_settings(settings: UserSettings, path: Path) -> None:
    """Write settings atomically (temp file + rename).

    Raises:
        StorageError: If the file cannot be written.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(yaml.safe_dump(settings.model_dump(), sort_keys=False))
        os.replace(tmp, path)
    except OSError as e:
        raise StorageError(f"Cannot write settings to {path}: {e}") from e
