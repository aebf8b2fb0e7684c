"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if environ.get("TASKLINE_DATA_DIR"):
        return Path(environ["TASKLINE_DATA_DIR"]).expanduser()

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "Taskline"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "tasks.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class SyncSettings:
    enabled: bool = True
    # Upper bound for a single remote call; expiry counts as a failed entry.
    remote_call_timeout_sec: float = 15.0
    simulated_latency_ms: int = 500
    log_path: Path = SYNC_LOG_PATH
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3


SYNC = SyncSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    probe_host: str = "1.1.1.1"
    probe_port: int = 443
    probe_timeout_sec: float = 3.0
    interval_sec: float = 10.0


CONNECTIVITY = ConnectivitySettings()


@dataclass(frozen=True)
class TaskDefaults:
    completed_by: str = "manual"
    nearby_radius_m: float = 1000.0


TASKS = TaskDefaults()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "CONNECTIVITY",
    "TASKS",
    "ConnectivitySettings",
    "SyncSettings",
    "TaskDefaults",
    "get_default_data_dir",
]
