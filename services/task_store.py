# taskline/services/task_store.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.errors import StorageError
from core.priorities import normalize_priority
from core.settings import TASKS
from models.sync_queue import SyncOperation, SyncQueueEntry
from models.task import Task
from services.location import distance_meters
from services.sync_queue import SyncQueue
from services.task_payload import task_to_payload
from storage.db import get_session
from utils.datetime_utils import utc_now


logger = logging.getLogger("taskline.store")

# Fields a local edit may change; id and created_at are immutable.
CONTENT_FIELDS = (
    "title",
    "description",
    "priority",
    "completed",
    "photo_path",
    "completed_at",
    "completed_by",
    "latitude",
    "longitude",
    "location_name",
)


def _validate(task: Task) -> None:
    title = task.title if isinstance(task.title, str) else ""
    if not title.strip():
        raise StorageError("Task title must not be empty")
    if task.description is None:
        raise StorageError("Task description must not be null")


class TaskStore:
    """Durable task table plus its outbox.

    Every local mutation writes the ``tasks`` row and the matching
    ``sync_queue`` entry in one transaction, so neither can exist without
    the other.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        queue: Optional[SyncQueue] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self.queue = queue or SyncQueue(session_factory)
        self._clock = clock

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"Storage operation failed: {exc}") from exc

    # ----- reads -----
    def read(self, task_id: int) -> Optional[Task]:
        with self._transaction() as s:
            return s.get(Task, task_id)

    def read_all(self) -> List[Task]:
        with self._transaction() as s:
            stmt = select(Task).order_by(Task.created_at.desc(), Task.id.desc())
            return list(s.exec(stmt))

    def pending_count(self) -> int:
        return self.queue.pending_count()

    def nearby(
        self,
        latitude: float,
        longitude: float,
        radius_m: float = TASKS.nearby_radius_m,
        *,
        distance: Callable[[float, float, float, float], float] = distance_meters,
    ) -> List[Task]:
        """Tasks with a location within ``radius_m``, closest first."""
        scored = []
        for task in self.read_all():
            if not task.has_location:
                continue
            meters = distance(latitude, longitude, task.latitude, task.longitude)
            if meters <= radius_m:
                scored.append((meters, task))
        scored.sort(key=lambda pair: pair[0])
        return [task for _, task in scored]

    # ----- mutations -----
    def create(self, task: Task) -> Task:
        _validate(task)
        now = self._clock()
        with self._transaction() as s:
            row = Task(
                **{field: getattr(task, field) for field in CONTENT_FIELDS},
                created_at=task.created_at or now,
            )
            row.title = row.title.strip()
            row.priority = normalize_priority(row.priority)
            row.is_synced = False
            row.last_modified = now
            s.add(row)
            s.flush()
            self.queue.enqueue(
                SyncOperation.CREATE, row.id, task_to_payload(row), now, session=s
            )
            s.commit()
            s.refresh(row)
        logger.debug("Task created: %s", row.id)
        return row

    def update(self, task: Task) -> int:
        if task.id is None:
            raise StorageError("Cannot update a task without an id")
        _validate(task)
        now = self._clock()
        with self._transaction() as s:
            row = s.get(Task, task.id)
            if row is None:
                return 0
            for field in CONTENT_FIELDS:
                setattr(row, field, getattr(task, field))
            row.title = row.title.strip()
            row.priority = normalize_priority(row.priority)
            row.is_synced = False
            row.last_modified = now
            s.add(row)
            s.flush()
            self.queue.enqueue(
                SyncOperation.UPDATE, row.id, task_to_payload(row), now, session=s
            )
            s.commit()
        logger.debug("Task updated: %s", task.id)
        return 1

    def delete(self, task_id: int) -> int:
        now = self._clock()
        with self._transaction() as s:
            row = s.get(Task, task_id)
            if row is None:
                return 0
            s.delete(row)
            self.queue.enqueue(SyncOperation.DELETE, task_id, None, now, session=s)
            s.commit()
        logger.debug("Task deleted: %s", task_id)
        return 1

    def toggle_completed(
        self, task_id: int, completed_by: Optional[str] = TASKS.completed_by
    ) -> Optional[Task]:
        task = self.read(task_id)
        if task is None:
            return None
        task.completed = not task.completed
        if task.completed:
            task.completed_at = self._clock()
            task.completed_by = completed_by
        else:
            task.completed_at = None
            task.completed_by = None
        self.update(task)
        return self.read(task_id)

    # ----- sync confirmation -----
    def confirm_synced(self, entry: SyncQueueEntry) -> None:
        """Acknowledge ``entry`` and mark its task synced once nothing else is pending.

        Only the sync engine calls this; ``last_modified`` is left as is.
        """
        with self._transaction() as s:
            self.queue.acknowledge(entry.id, session=s)
            if entry.operation != SyncOperation.DELETE.value:
                if self.queue.pending_for(entry.task_id, session=s) == 0:
                    row = s.get(Task, entry.task_id)
                    if row is not None:
                        row.is_synced = True
                        s.add(row)
            s.commit()


__all__ = ["CONTENT_FIELDS", "TaskStore"]
