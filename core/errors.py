"""Error taxonomy shared by the store, the codec and the sync engine."""
from __future__ import annotations


class TasklineError(Exception):
    """Base class for errors raised by Taskline services."""


class StorageError(TasklineError):
    """Local persistence failed (constraint violation, I/O failure).

    Never retried; raised synchronously to the caller of the store operation.
    """


class SerializationError(TasklineError):
    """A queued payload could not be decoded into a task."""


class RemoteError(TasklineError):
    """The remote task service was unreachable, timed out or rejected a write."""


__all__ = ["TasklineError", "StorageError", "SerializationError", "RemoteError"]
