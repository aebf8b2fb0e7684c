"""Utility helpers for task priorities."""
from __future__ import annotations

from enum import Enum
from typing import Dict


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# rank is used for sorting: higher means more pressing.
PRIORITY_META: Dict[str, Dict[str, object]] = {
    Priority.LOW.value: {"label": "Low", "rank": 0},
    Priority.MEDIUM.value: {"label": "Medium", "rank": 1},
    Priority.HIGH.value: {"label": "High", "rank": 2},
    Priority.URGENT.value: {"label": "Urgent", "rank": 3},
}

DEFAULT_PRIORITY = Priority.MEDIUM.value


def normalize_priority(value: Priority | str | None) -> str:
    """Map external values onto one of the supported priority names."""
    if value is None:
        return DEFAULT_PRIORITY
    if isinstance(value, Priority):
        return value.value
    lowered = str(value).strip().lower()
    if lowered in PRIORITY_META:
        return lowered
    return DEFAULT_PRIORITY


def priority_label(value: str) -> str:
    meta = PRIORITY_META.get(normalize_priority(value))
    return str(meta["label"])


def priority_rank(value: str) -> int:
    meta = PRIORITY_META.get(normalize_priority(value))
    return int(meta["rank"])


def priority_options() -> Dict[str, str]:
    """Return mapping of priority values -> labels."""
    return {level: str(meta["label"]) for level, meta in PRIORITY_META.items()}
