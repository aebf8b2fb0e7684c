"""JSON snapshots of tasks carried by sync queue entries."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from core.errors import SerializationError
from core.priorities import normalize_priority
from models.task import Task
from utils.datetime_utils import parse_iso, to_iso_utc


def _serialise_task(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": task.priority,
        "completed": bool(task.completed),
        "createdAt": to_iso_utc(task.created_at),
        "photoPath": task.photo_path,
        "completedAt": to_iso_utc(task.completed_at),
        "completedBy": task.completed_by,
        "latitude": task.latitude,
        "longitude": task.longitude,
        "locationName": task.location_name,
        "isSynced": bool(task.is_synced),
        "lastModified": to_iso_utc(task.last_modified),
    }


def task_to_payload(task: Task) -> str:
    return json.dumps(_serialise_task(task), ensure_ascii=False, sort_keys=True)


def _timestamp(data: Dict[str, Any], key: str, *, required: bool) -> Optional[datetime]:
    raw = data.get(key)
    if raw in (None, ""):
        if required:
            raise SerializationError(f"Payload is missing {key!r}")
        return None
    parsed = parse_iso(str(raw))
    if parsed is None:
        raise SerializationError(f"Invalid timestamp for {key!r}: {raw!r}")
    return parsed


def _optional_float(data: Dict[str, Any], key: str) -> Optional[float]:
    raw = data.get(key)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Invalid number for {key!r}: {raw!r}") from exc


def task_from_payload(payload: Optional[str]) -> Task:
    """Decode a queued snapshot; any malformed input raises SerializationError."""

    if not payload:
        raise SerializationError("Empty payload")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"Payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SerializationError("Payload must be a JSON object")

    task_id = data.get("id")
    title = data.get("title")
    if not isinstance(task_id, int) or isinstance(task_id, bool):
        raise SerializationError("Payload is missing an integer 'id'")
    if not isinstance(title, str) or not title.strip():
        raise SerializationError("Payload is missing 'title'")

    return Task(
        id=task_id,
        title=title,
        description=str(data.get("description") or ""),
        priority=normalize_priority(data.get("priority")),
        completed=bool(data.get("completed", False)),
        created_at=_timestamp(data, "createdAt", required=True),
        photo_path=data.get("photoPath"),
        completed_at=_timestamp(data, "completedAt", required=False),
        completed_by=data.get("completedBy"),
        latitude=_optional_float(data, "latitude"),
        longitude=_optional_float(data, "longitude"),
        location_name=data.get("locationName"),
        is_synced=bool(data.get("isSynced", False)),
        last_modified=_timestamp(data, "lastModified", required=True),
    )


__all__ = ["task_from_payload", "task_to_payload"]
