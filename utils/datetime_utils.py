"""Utilities for working with ISO-8601 timestamps and UTC datetimes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

UTC = timezone.utc


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string and return a timezone-aware UTC datetime."""

    if not s:
        return None

    value = s.strip()
    if not value:
        return None

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def to_iso_utc(dt: Optional[Union[datetime, str]]) -> Optional[str]:
    """Convert a datetime (or string) to ISO-8601 in UTC, keeping microseconds."""

    if dt is None:
        return None
    if isinstance(dt, str):
        dt = parse_iso(dt)
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo after converting to UTC; SQLite columns hold naive UTC."""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "UTC",
    "ensure_utc",
    "naive_utc",
    "parse_iso",
    "to_iso_utc",
    "utc_now",
]
