# taskline/models/task.py
from typing import Optional
from datetime import datetime

from sqlmodel import SQLModel, Field

from core.priorities import DEFAULT_PRIORITY
from models.types import UTCDateTime
from utils.datetime_utils import utc_now


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str = ""
    priority: str = DEFAULT_PRIORITY  # low / medium / high / urgent
    completed: bool = False
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    photo_path: Optional[str] = None
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_by: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = None
    is_synced: bool = Field(default=False, index=True)
    last_modified: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_path)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def was_completed_by_shake(self) -> bool:
        return self.completed and self.completed_by == "shake"
