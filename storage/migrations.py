"""Additive database migrations for Taskline."""

from __future__ import annotations

import logging

from sqlalchemy import text

from utils.datetime_utils import naive_utc, utc_now


logger = logging.getLogger(__name__)

# Format used by SQLAlchemy's SQLite DateTime type.
_SQLITE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def _table_exists(conn, table: str) -> bool:
    result = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.first() is not None


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_task_columns(conn) -> None:
    if not _table_exists(conn, "tasks"):
        return

    migrated_at = naive_utc(utc_now()).strftime(_SQLITE_DATETIME_FORMAT)
    columns = {
        "photo_path": "TEXT",
        "completed_at": "DATETIME",
        "completed_by": "TEXT",
        "latitude": "FLOAT",
        "longitude": "FLOAT",
        "location_name": "TEXT",
        # Rows written before sync tracking existed are treated as already synced.
        "is_synced": "BOOLEAN NOT NULL DEFAULT 1",
        "last_modified": f"DATETIME NOT NULL DEFAULT '{migrated_at}'",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "tasks", name):
            logger.info("Adding column tasks.%s", name)
            conn.execute(text(f"ALTER TABLE tasks ADD COLUMN {name} {ddl_type}"))

    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_is_synced ON tasks (is_synced)"))


def ensure_sync_queue_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id INTEGER NOT NULL,
                operation VARCHAR NOT NULL,
                payload VARCHAR,
                timestamp DATETIME NOT NULL
            )
            """
        )
    )
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_sync_queue_order
            ON sync_queue (timestamp, id)
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_task_columns(conn)
        # SQLModel creates the sync_queue table, but ensure the ordering index exists
        ensure_sync_queue_table(conn)


__all__ = ["run_all"]
