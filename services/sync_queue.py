from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from sqlmodel import Session, select
from sqlalchemy import func

from models.sync_queue import SyncOperation, SyncQueueEntry
from storage.db import get_session
from utils.datetime_utils import utc_now


VALID_OPS = {op.value for op in SyncOperation}


class SyncQueue:
    """Durable outbox of local mutations not yet confirmed by the remote side.

    Methods accepting ``session`` join the caller's transaction and leave the
    commit to it; without one they open and commit their own session.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _use(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self._session_factory() as own:
            yield own
            own.commit()

    def enqueue(
        self,
        op: SyncOperation | str,
        task_id: int,
        payload: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        *,
        session: Optional[Session] = None,
    ) -> SyncQueueEntry:
        op_name = op.value if isinstance(op, SyncOperation) else str(op)
        if op_name not in VALID_OPS:
            raise ValueError(f"Unsupported op: {op}")
        if op_name != SyncOperation.DELETE.value and not payload:
            raise ValueError(f"{op_name} entries require a payload")
        record = SyncQueueEntry(
            task_id=task_id,
            operation=op_name,
            payload=payload if op_name != SyncOperation.DELETE.value else None,
            timestamp=timestamp or utc_now(),
        )
        if session is not None:
            session.add(record)
            session.flush()
            return record
        with self._session_factory() as own:
            own.add(record)
            own.commit()
            own.refresh(record)
        return record

    def drain(self) -> List[SyncQueueEntry]:
        """Snapshot of every pending entry in processing order."""
        with self._session_factory() as session:
            stmt = select(SyncQueueEntry).order_by(
                SyncQueueEntry.timestamp.asc(), SyncQueueEntry.id.asc()
            )
            return list(session.exec(stmt))

    def acknowledge(self, entry_id: int, *, session: Optional[Session] = None) -> bool:
        with self._use(session) as s:
            record = s.get(SyncQueueEntry, entry_id)
            if not record:
                return False
            s.delete(record)
            s.flush()
            return True

    def pending_for(self, task_id: int, *, session: Optional[Session] = None) -> int:
        with self._use(session) as s:
            stmt = (
                select(func.count())
                .select_from(SyncQueueEntry)
                .where(SyncQueueEntry.task_id == task_id)
            )
            return int(s.exec(stmt).one())

    def pending_count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(SyncQueueEntry)).one())


__all__ = ["SyncQueue", "VALID_OPS"]
