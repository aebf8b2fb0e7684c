from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Awaitable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from core.errors import RemoteError, SerializationError, StorageError
from core.settings import SYNC
from models.sync_queue import SyncOperation, SyncQueueEntry
from services.connectivity import ConnectivityMonitor, Subscription
from services.remote import RemoteTaskService
from services.task_payload import task_from_payload
from services.task_store import TaskStore
from utils.datetime_utils import ensure_utc, utc_now


BATCH_ERRORS = (SerializationError, RemoteError, StorageError)


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("taskline.sync")
    if not logger.handlers:
        SYNC.log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            SYNC.log_path,
            maxBytes=SYNC.log_max_bytes,
            backupCount=SYNC.log_backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    total: int = 0
    acknowledged: int = 0
    remote_won: int = 0
    failed_entry_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncEngine:
    """Replays the outbox against the remote service when connectivity returns.

    At most one batch runs at a time; a trigger that arrives while a batch is
    running is dropped rather than queued. A batch stops at the first failing
    entry, leaving it and everything after it in the outbox for the next run.
    """

    def __init__(
        self,
        store: TaskStore,
        remote: RemoteTaskService,
        *,
        call_timeout_sec: Optional[float] = SYNC.remote_call_timeout_sec,
        enabled: bool = SYNC.enabled,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.queue = store.queue
        self.remote = remote
        self.enabled = enabled
        self._timeout = call_timeout_sec
        self._state = SyncState.IDLE
        self._monitor: Optional[ConnectivityMonitor] = None
        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        self._spawned: Set[asyncio.Task] = set()
        self.last_report: Optional[SyncReport] = None
        self.logger = logger or _ensure_logger()

    # ------------------------------------------------------------------
    # State
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is SyncState.SYNCING

    def status(self) -> dict:
        report = self.last_report
        return {
            "state": self._state.value,
            "online": self._monitor.current_state() if self._monitor else None,
            "queueSize": self.queue.pending_count(),
            "lastSyncAt": report.finished_at if report else None,
            "lastError": report.error if report else None,
        }

    # ------------------------------------------------------------------
    # Connectivity wiring
    def attach(self, monitor: ConnectivityMonitor) -> None:
        """Listen to ``monitor``; must be called with a running event loop."""
        if self._subscription is not None:
            raise RuntimeError("SyncEngine is already attached to a monitor")
        self._monitor = monitor
        self._subscription = monitor.subscribe()
        self._listener = asyncio.create_task(self._listen(self._subscription))

    async def detach(self) -> None:
        """Stop listening and wait for an in-flight batch to finish."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()
        if self._listener is not None:
            await self._listener
            self._listener = None
        running = [task for task in self._spawned if not task.done()]
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._monitor = None

    async def _listen(self, subscription: Subscription) -> None:
        async for reachable in subscription:
            self.on_connectivity_change(reachable)

    def on_connectivity_change(self, reachable: bool) -> Optional[asyncio.Task]:
        if not reachable:
            self.logger.info("Connectivity lost; sync waits for the next transition")
            return None
        if self.is_syncing:
            self.logger.info("Sync already running; trigger dropped")
            return None
        task = asyncio.create_task(self.trigger())
        self._spawned.add(task)
        task.add_done_callback(self._batch_done)
        return task

    def _batch_done(self, task: asyncio.Task) -> None:
        self._spawned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Sync batch crashed: %s", exc, exc_info=exc)

    # ------------------------------------------------------------------
    # Processing
    async def trigger(self) -> Optional[SyncReport]:
        """Run one batch unless one is already running (then return None)."""
        if not self.enabled:
            return None
        if self.is_syncing:
            self.logger.info("Sync already running; trigger dropped")
            return None
        self._state = SyncState.SYNCING
        try:
            report = await self._run_batch()
        finally:
            self._state = SyncState.IDLE
        self.last_report = report
        return report

    async def _run_batch(self) -> SyncReport:
        report = SyncReport(started_at=utc_now())
        try:
            entries = self.queue.drain()
        except SQLAlchemyError as exc:
            self.logger.error("Could not read sync queue: %s", exc)
            report.error = str(exc)
            report.finished_at = utc_now()
            return report

        report.total = len(entries)
        if not entries:
            self.logger.info("Sync finished: queue empty")
            report.finished_at = utc_now()
            return report

        self.logger.info("Starting sync of %d queued entries", len(entries))
        for entry in entries:
            try:
                remote_won = await self._process(entry)
            except BATCH_ERRORS as exc:
                report.failed_entry_id = entry.id
                report.error = str(exc)
                self.logger.warning(
                    "Sync error for task %s (%s #%s): %s. Stopping sync.",
                    entry.task_id,
                    entry.operation,
                    entry.id,
                    exc,
                )
                break
            report.acknowledged += 1
            if remote_won:
                report.remote_won += 1
            self.logger.info(
                "Synced and removed %s for task %s", entry.operation, entry.task_id
            )

        report.finished_at = utc_now()
        self.logger.info(
            "Sync finished: %d/%d acknowledged", report.acknowledged, report.total
        )
        return report

    async def _process(self, entry: SyncQueueEntry) -> bool:
        """Apply one entry; returns True when the remote version won."""
        op = entry.operation
        candidate = None
        if op in (SyncOperation.CREATE.value, SyncOperation.UPDATE.value):
            candidate = task_from_payload(entry.payload)
        elif op != SyncOperation.DELETE.value:
            raise SerializationError(f"Unknown sync operation {op!r}")

        remote_version = await self._call(
            self.remote.fetch_version(entry.task_id), "fetch_version"
        )
        if remote_version is not None:
            try:
                remote_newer = ensure_utc(remote_version.server_modified_at) > ensure_utc(
                    entry.timestamp
                )
            except (AttributeError, TypeError) as exc:
                raise RemoteError(
                    f"fetch_version returned an unusable version for task {entry.task_id}: {exc}"
                ) from exc
            if remote_newer:
                self.logger.info(
                    "Remote task %s newer than local %s; keeping remote version",
                    entry.task_id,
                    op,
                )
                self.store.confirm_synced(entry)
                return True

        if candidate is not None:
            ack = await self._call(self.remote.push(candidate), "push")
        else:
            ack = await self._call(self.remote.push_delete(entry.task_id), "push_delete")
        if ack is False:
            raise RemoteError(f"Remote rejected {op} for task {entry.task_id}")

        self.store.confirm_synced(entry)
        return False

    async def _call(self, call: Awaitable[Any], name: str) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise RemoteError(f"{name} timed out after {self._timeout}s") from exc
        except BATCH_ERRORS:
            raise
        except Exception as exc:
            raise RemoteError(f"{name} failed: {exc}") from exc


__all__ = ["SyncEngine", "SyncReport", "SyncState"]
