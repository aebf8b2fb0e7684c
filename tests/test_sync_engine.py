import asyncio
import logging
from datetime import timedelta

import pytest

from core.errors import RemoteError
from models import SyncQueueEntry, Task
from services.connectivity import ConnectivityMonitor
from services.remote import InMemoryRemote, RemoteVersion
from services.sync_engine import SyncEngine, SyncState
from services.task_store import TaskStore
from storage.db import create_db_engine, init_db, session_factory_for


TEST_LOGGER = logging.getLogger("tests.sync")


class FakeRemote:
    """Scriptable stand-in for the remote task service."""

    def __init__(self, *, fail_on_write=None, versions=None, hold=False, write_delay=0.0):
        self.fail_on_write = fail_on_write
        self.versions = versions or {}
        self.write_delay = write_delay
        self.hold = asyncio.Event() if hold else None
        self.write_started = asyncio.Event()
        self.writes = 0
        self.fetched = []
        self.pushed = []
        self.deleted = []

    async def fetch_version(self, task_id):
        self.fetched.append(task_id)
        return self.versions.get(task_id)

    async def _write(self):
        self.writes += 1
        self.write_started.set()
        if self.hold is not None:
            await self.hold.wait()
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.fail_on_write == self.writes:
            raise RemoteError("remote rejected the write")

    async def push(self, task):
        await self._write()
        self.pushed.append((task.id, task.title))
        return True

    async def push_delete(self, task_id):
        await self._write()
        self.deleted.append(task_id)
        return True


class FixedProbe:
    def __init__(self, reachable):
        self.reachable = reachable

    def check_now(self):
        return self.reachable


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_db_engine(tmp_path / "tasks.db")
    init_db(engine)
    return session_factory_for(engine)


@pytest.fixture()
def store(session_factory):
    return TaskStore(session_factory)


def _engine(store, remote, **kwargs):
    return SyncEngine(store, remote, logger=TEST_LOGGER, **kwargs)


def _snapshot(store):
    entries = [(e.id, e.task_id, e.operation, e.payload) for e in store.queue.drain()]
    tasks = [t.model_dump() for t in store.read_all()]
    return entries, tasks


def test_offline_edits_sync_when_connectivity_returns(store):
    async def scenario():
        remote = FakeRemote()
        engine = _engine(store, remote)
        monitor = ConnectivityMonitor(FixedProbe(False))
        engine.attach(monitor)
        monitor.start()

        task = store.create(Task(title="T1"))
        assert store.pending_count() == 1
        assert store.read(task.id).is_synced is False

        task.description = "edited offline"
        store.update(task)
        assert [e.operation for e in store.queue.drain()] == ["CREATE", "UPDATE"]
        assert store.read(task.id).is_synced is False

        monitor.update(True)
        await engine.detach()
        return task.id, remote

    task_id, remote = asyncio.run(scenario())
    assert store.pending_count() == 0
    assert store.read(task_id).is_synced is True
    assert remote.pushed == [(task_id, "T1"), (task_id, "T1")]


def test_full_run_empties_queue_and_marks_everything_synced(store):
    first = store.create(Task(title="a"))
    second = store.create(Task(title="b"))
    doomed = store.create(Task(title="c"))
    store.delete(doomed.id)

    remote = FakeRemote()
    report = asyncio.run(_engine(store, remote).trigger())

    assert report.ok
    assert report.total == report.acknowledged == 4
    assert store.pending_count() == 0
    assert all(t.is_synced for t in store.read_all())
    assert {first.id, second.id} <= {task_id for task_id, _ in remote.pushed}
    assert remote.deleted == [doomed.id]


@pytest.mark.parametrize("failing", [1, 2, 3])
def test_kth_failure_keeps_suffix_in_order(store, failing):
    tasks = [store.create(Task(title=f"task {i}")) for i in range(3)]
    before = store.queue.drain()

    report = asyncio.run(_engine(store, FakeRemote(fail_on_write=failing)).trigger())

    remaining = store.queue.drain()
    assert [e.id for e in remaining] == [e.id for e in before[failing - 1:]]
    assert report.acknowledged == failing - 1
    assert report.failed_entry_id == before[failing - 1].id
    assert "rejected" in report.error
    for index, task in enumerate(tasks):
        assert store.read(task.id).is_synced is (index < failing - 1)


def test_first_failure_leaves_both_tasks_pending(store):
    first = store.create(Task(title="first"))
    second = store.create(Task(title="second"))

    asyncio.run(_engine(store, FakeRemote(fail_on_write=1)).trigger())

    assert store.pending_count() == 2
    assert store.read(first.id).is_synced is False
    assert store.read(second.id).is_synced is False


def test_failed_entries_are_retried_on_next_trigger(store):
    task = store.create(Task(title="retry me"))
    remote = FakeRemote(fail_on_write=1)
    engine = _engine(store, remote)

    assert asyncio.run(engine.trigger()).ok is False
    assert store.pending_count() == 1
    assert engine.state is SyncState.IDLE

    assert asyncio.run(engine.trigger()).ok is True
    assert store.pending_count() == 0
    assert store.read(task.id).is_synced is True


def test_trigger_while_syncing_is_a_no_op(store):
    store.create(Task(title="slow"))
    store.create(Task(title="slower"))

    async def scenario():
        remote = FakeRemote(hold=True)
        engine = _engine(store, remote)
        running = asyncio.create_task(engine.trigger())
        await remote.write_started.wait()
        assert engine.state is SyncState.SYNCING

        before = _snapshot(store)
        assert await engine.trigger() is None
        assert engine.on_connectivity_change(True) is None
        assert _snapshot(store) == before

        remote.hold.set()
        report = await running
        return engine, report, remote

    engine, report, remote = asyncio.run(scenario())
    assert engine.state is SyncState.IDLE
    assert report.acknowledged == 2
    assert remote.writes == 2


def test_empty_queue_returns_to_idle(store):
    remote = FakeRemote()
    engine = _engine(store, remote)
    report = asyncio.run(engine.trigger())
    assert report.total == 0
    assert engine.state is SyncState.IDLE
    assert remote.fetched == []


def test_newer_remote_version_wins_without_push(store):
    task = store.create(Task(title="local"))
    entry = store.queue.drain()[0]
    remote_task = Task(id=task.id, title="remote", created_at=task.created_at,
                       last_modified=entry.timestamp + timedelta(minutes=5))
    remote = FakeRemote(
        versions={task.id: RemoteVersion(remote_task, remote_task.last_modified)}
    )

    report = asyncio.run(_engine(store, remote).trigger())

    assert report.remote_won == 1
    assert remote.pushed == []
    assert store.pending_count() == 0
    stored = store.read(task.id)
    assert stored.is_synced is True
    assert stored.title == "local"


def test_older_or_equal_remote_version_loses(store):
    task = store.create(Task(title="local"))
    entry = store.queue.drain()[0]
    remote_task = Task(id=task.id, title="remote", created_at=task.created_at,
                       last_modified=entry.timestamp)
    remote = FakeRemote(
        versions={task.id: RemoteVersion(remote_task, entry.timestamp)}
    )

    report = asyncio.run(_engine(store, remote).trigger())

    assert report.remote_won == 0
    assert remote.pushed == [(task.id, "local")]


def test_remote_call_timeout_stops_batch(store):
    store.create(Task(title="stuck"))
    store.create(Task(title="behind"))

    remote = FakeRemote(write_delay=1.0)
    engine = _engine(store, remote, call_timeout_sec=0.05)
    report = asyncio.run(engine.trigger())

    assert "timed out" in report.error
    assert report.acknowledged == 0
    assert store.pending_count() == 2
    assert engine.state is SyncState.IDLE


def test_corrupt_payload_stops_batch(store, session_factory):
    task = store.create(Task(title="ok"))
    entry_id = store.queue.drain()[0].id
    with session_factory() as session:
        entry = session.get(SyncQueueEntry, entry_id)
        entry.payload = "{broken"
        session.add(entry)
        session.commit()

    remote = FakeRemote()
    report = asyncio.run(_engine(store, remote).trigger())

    assert report.failed_entry_id is not None
    assert remote.fetched == []
    assert store.pending_count() == 1
    assert store.read(task.id).is_synced is False


def test_in_memory_remote_round_trip(store):
    task = store.create(Task(title="kept remotely"))
    task.completed = True
    store.update(task)
    store.delete(store.create(Task(title="gone")).id)

    remote = InMemoryRemote()
    report = asyncio.run(_engine(store, remote).trigger())

    assert report.ok
    assert remote.get(task.id).completed is True
    assert [name for name, _ in remote.calls].count("push_delete") == 1


def test_unavailable_in_memory_remote_is_a_failure(store):
    store.create(Task(title="offline server"))
    remote = InMemoryRemote()
    remote.available = False

    report = asyncio.run(_engine(store, remote).trigger())

    assert report.acknowledged == 0
    assert store.pending_count() == 1


def test_disabled_engine_never_runs(store):
    store.create(Task(title="parked"))
    engine = _engine(store, FakeRemote(), enabled=False)
    assert asyncio.run(engine.trigger()) is None
    assert store.pending_count() == 1


def test_status_reports_queue_and_last_error(store):
    store.create(Task(title="status"))
    engine = _engine(store, FakeRemote(fail_on_write=1))
    asyncio.run(engine.trigger())
    status = engine.status()
    assert status["state"] == "idle"
    assert status["queueSize"] == 1
    assert status["lastError"]
    assert status["online"] is None


def test_detach_waits_for_batch_after_flapping_connectivity(store):
    store.create(Task(title="flaky network"))

    async def scenario():
        remote = FakeRemote(write_delay=0.05)
        engine = _engine(store, remote)
        monitor = ConnectivityMonitor(FixedProbe(True))
        engine.attach(monitor)
        monitor.update(True)
        monitor.update(False)
        monitor.update(True)
        await engine.detach()
        return engine, remote

    engine, remote = asyncio.run(scenario())
    assert engine.state is SyncState.IDLE
    assert remote.writes == 1
    assert store.pending_count() == 0


class VersionlessRemote(FakeRemote):
    async def fetch_version(self, task_id):
        self.fetched.append(task_id)
        return object()


def test_unusable_remote_version_is_a_remote_failure(store):
    task = store.create(Task(title="odd server"))
    remote = VersionlessRemote()
    engine = _engine(store, remote)

    report = asyncio.run(engine.trigger())

    assert "unusable version" in report.error
    assert engine.last_report is report
    assert remote.pushed == []
    assert store.pending_count() == 1
    assert store.read(task.id).is_synced is False


def test_crashing_batch_started_by_connectivity_is_logged(store, caplog):
    class ExplodingQueue:
        def drain(self):
            raise RuntimeError("queue exploded")

        def pending_count(self):
            return 0

    async def scenario():
        engine = _engine(store, FakeRemote())
        engine.queue = ExplodingQueue()
        monitor = ConnectivityMonitor(FixedProbe(True))
        engine.attach(monitor)
        monitor.update(True)
        await engine.detach()
        return engine

    with caplog.at_level(logging.ERROR, logger=TEST_LOGGER.name):
        engine = asyncio.run(scenario())

    assert engine.state is SyncState.IDLE
    assert "Sync batch crashed: queue exploded" in caplog.text
