"""SQLModel table for mutations waiting to be confirmed by the remote side."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from models.types import UTCDateTime
from utils.datetime_utils import utc_now


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncQueueEntry(SQLModel, table=True):
    __tablename__ = "sync_queue"
    # Ids are never reused once the queue empties.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(index=True)
    operation: str
    payload: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)


__all__ = ["SyncOperation", "SyncQueueEntry"]
