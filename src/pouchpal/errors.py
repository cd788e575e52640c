"""Exception types raised by the pouchpal core."""


class PouchPalError(Exception):
    """Base class for pouchpal errors."""


class StorageError(PouchPalError):
    """A durable read or write failed.

    Raised from every Event Store mutation. Not retried.
    """


class MalformedQueueEntry(PouchPalError):
    """A pending-log entry is missing a field or has the wrong type."""

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Malformed pending log at index {index}: {reason}")
