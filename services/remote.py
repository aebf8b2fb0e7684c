"""Remote task service interface and the simulated server used until a real one exists."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from core.errors import RemoteError
from models.task import Task
from services.task_payload import task_from_payload, task_to_payload
from utils.datetime_utils import ensure_utc


logger = logging.getLogger("taskline.remote")


@dataclass(frozen=True)
class RemoteVersion:
    task: Task
    server_modified_at: datetime


class RemoteTaskService(Protocol):
    async def fetch_version(self, task_id: int) -> Optional[RemoteVersion]:
        ...

    async def push(self, task: Task) -> bool:
        ...

    async def push_delete(self, task_id: int) -> bool:
        ...


class InMemoryRemote:
    """Simulated remote service holding task snapshots in memory.

    The server records the pushed task's ``last_modified`` as its modification
    time, so last-write-wins compares client edit times on both sides.
    """

    def __init__(self, *, latency_ms: int = 0) -> None:
        self.latency_ms = latency_ms
        self.available = True
        self._tasks: Dict[int, Tuple[str, datetime]] = {}
        self.calls: List[Tuple[str, int]] = []

    async def _roundtrip(self, name: str, task_id: int) -> None:
        self.calls.append((name, task_id))
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)
        if not self.available:
            raise RemoteError(f"Remote unreachable during {name} for task {task_id}")

    def seed(self, task: Task, server_modified_at: Optional[datetime] = None) -> None:
        """Store a version directly, as if another client had written it."""
        modified = ensure_utc(server_modified_at or task.last_modified)
        self._tasks[task.id] = (task_to_payload(task), modified)

    def get(self, task_id: int) -> Optional[Task]:
        stored = self._tasks.get(task_id)
        return task_from_payload(stored[0]) if stored else None

    async def fetch_version(self, task_id: int) -> Optional[RemoteVersion]:
        await self._roundtrip("fetch_version", task_id)
        stored = self._tasks.get(task_id)
        if stored is None:
            return None
        payload, modified = stored
        return RemoteVersion(task=task_from_payload(payload), server_modified_at=modified)

    async def push(self, task: Task) -> bool:
        if task.id is None:
            raise RemoteError("Remote rejected a task without an id")
        await self._roundtrip("push", task.id)
        self._tasks[task.id] = (task_to_payload(task), ensure_utc(task.last_modified))
        logger.debug("Remote stored task %s", task.id)
        return True

    async def push_delete(self, task_id: int) -> bool:
        await self._roundtrip("push_delete", task_id)
        self._tasks.pop(task_id, None)
        logger.debug("Remote deleted task %s", task_id)
        return True


__all__ = ["InMemoryRemote", "RemoteTaskService", "RemoteVersion"]
