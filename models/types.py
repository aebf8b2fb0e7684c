"""Custom column types shared by the SQLModel tables."""
from __future__ import annotations

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from utils.datetime_utils import ensure_utc, naive_utc


class UTCDateTime(TypeDecorator):
    """Store naive UTC in SQLite, hand back timezone-aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return naive_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


__all__ = ["UTCDateTime"]
