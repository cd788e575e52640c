"""PouchPal - local habit logging with daily limits and widget sync."""

__version__ = "0.1.0"
