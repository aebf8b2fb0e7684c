"""Taskline: offline-first task list that syncs when the network comes back."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.errors import TasklineError
from core.priorities import Priority, priority_label
from core.settings import CONFIG_PATH, DB_PATH, LOG_DIR, TASKS
from models.task import Task
from services.connectivity import ConnectivityMonitor, ConnectivityProbe, SocketProbe
from services.remote import InMemoryRemote, RemoteTaskService
from services.sync_engine import SyncEngine, SyncReport
from services.sync_queue import SyncQueue
from services.task_store import TaskStore
from storage.config import AppConfig, load_config
from storage.db import create_db_engine, init_db, session_factory_for


LOG_PATH = LOG_DIR / "taskline.log"


class App:
    """Application-scoped services, built once and handed to whoever needs them."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        db_engine=None,
        remote: Optional[RemoteTaskService] = None,
        probe: Optional[ConnectivityProbe] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.db_engine = db_engine or create_db_engine(self.config.db_path or DB_PATH)
        init_db(self.db_engine)
        self.session_factory = session_factory_for(self.db_engine)
        self.queue = SyncQueue(self.session_factory)
        self.store = TaskStore(self.session_factory, self.queue)
        # Placeholder until a real remote service exists.
        self.remote = remote or InMemoryRemote(latency_ms=self.config.simulated_latency_ms)
        self.monitor = ConnectivityMonitor(
            probe or SocketProbe(self.config.probe_host, self.config.probe_port),
            interval_sec=self.config.probe_interval_sec,
        )
        self.sync = SyncEngine(
            self.store,
            self.remote,
            call_timeout_sec=self.config.remote_call_timeout_sec,
        )

    async def sync_once(self) -> Optional[SyncReport]:
        """Probe once and run a batch if the network is reachable."""
        if not await self.monitor.poll_once():
            return None
        return await self.sync.trigger()

    async def watch(self, seconds: Optional[float] = None) -> None:
        """Run monitor and engine together until interrupted or ``seconds`` elapse."""
        self.sync.attach(self.monitor)
        await self.monitor.poll_once()
        poller = asyncio.create_task(self.monitor.run())
        try:
            if seconds is None:
                await poller
            else:
                await asyncio.sleep(seconds)
        finally:
            self.monitor.stop()
            poller.cancel()
            with suppress(asyncio.CancelledError):
                await poller
            await self.sync.detach()


def _format_task(task: Task) -> str:
    mark = "x" if task.completed else " "
    flag = "" if task.is_synced else " *"
    line = f"{task.id:>4} [{mark}] {task.title} ({priority_label(task.priority)}){flag}"
    if task.location_name:
        line += f" @ {task.location_name}"
    return line


def _setup_logging(log_path: Path, verbose: bool) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        filemode="a",
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to config.json (default: %(default)s)",
    )
    parser.add_argument(
        "--log",
        type=Path,
        default=LOG_PATH,
        help="Path to a log file (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Create a task")
    add.add_argument("title")
    add.add_argument("--description", default="")
    add.add_argument(
        "--priority",
        choices=[p.value for p in Priority],
        default=Priority.MEDIUM.value,
    )
    add.add_argument("--photo", dest="photo_path")
    add.add_argument("--lat", type=float, dest="latitude")
    add.add_argument("--lon", type=float, dest="longitude")
    add.add_argument("--place", dest="location_name")

    sub.add_parser("list", help="List tasks, newest first (* = not synced)")

    done = sub.add_parser("done", help="Toggle completion of a task")
    done.add_argument("task_id", type=int)
    done.add_argument("--by", default=None, help="Who completed it")

    delete = sub.add_parser("delete", help="Delete a task")
    delete.add_argument("task_id", type=int)

    nearby = sub.add_parser("nearby", help="Tasks close to a coordinate")
    nearby.add_argument("latitude", type=float)
    nearby.add_argument("longitude", type=float)
    nearby.add_argument("--radius", type=float, default=TASKS.nearby_radius_m)

    sub.add_parser("status", help="Show sync status")
    sub.add_parser("sync", help="Sync now if the network is reachable")

    watch = sub.add_parser("watch", help="Sync whenever connectivity returns")
    watch.add_argument("--seconds", type=float, default=None)
    return parser


def run(argv: Optional[List[str]] = None, app: Optional[App] = None) -> int:
    args = build_parser().parse_args(argv)
    if app is None:
        _setup_logging(args.log, args.verbose)
        app = App(load_config(args.config))
    store = app.store

    try:
        if args.command == "add":
            task = store.create(
                Task(
                    title=args.title,
                    description=args.description,
                    priority=args.priority,
                    photo_path=args.photo_path,
                    latitude=args.latitude,
                    longitude=args.longitude,
                    location_name=args.location_name,
                )
            )
            print(_format_task(task))
        elif args.command == "list":
            for task in store.read_all():
                print(_format_task(task))
        elif args.command == "done":
            task = store.toggle_completed(args.task_id, args.by or app.config.completed_by)
            if task is None:
                print(f"Task {args.task_id} not found")
                return 1
            print(_format_task(task))
        elif args.command == "delete":
            if not store.delete(args.task_id):
                print(f"Task {args.task_id} not found")
                return 1
            print(f"Deleted task {args.task_id}")
        elif args.command == "nearby":
            for task in store.nearby(args.latitude, args.longitude, args.radius):
                print(_format_task(task))
        elif args.command == "status":
            for key, value in app.sync.status().items():
                print(f"{key}: {value}")
        elif args.command == "sync":
            report = asyncio.run(app.sync_once())
            if report is None:
                print("Offline or already syncing; nothing done.")
                return 1
            print(f"Synced {report.acknowledged}/{report.total} entries")
            if report.error:
                print(f"Stopped: {report.error}")
                return 1
        elif args.command == "watch":
            with suppress(KeyboardInterrupt):
                asyncio.run(app.watch(args.seconds))
    except TasklineError as exc:
        logging.exception("Command %s failed", args.command)
        print(f"Error: {exc}")
        return 1
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
