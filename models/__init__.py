"""ORM models exposed by the Taskline application."""
from .task import Task
from .sync_queue import SyncOperation, SyncQueueEntry

__all__ = ["Task", "SyncOperation", "SyncQueueEntry"]
