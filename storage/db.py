# taskline/storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Callable

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.task  # noqa: F401
import models.sync_queue  # noqa: F401
from storage import migrations


_engine = None


def _enable_sqlite_durability(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def create_db_engine(path: str | Path = DB_PATH):
    """Create an engine for the SQLite file at ``path``."""

    db_file = Path(path)
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_file.as_posix()}", echo=False)
    event.listen(engine, "connect", _enable_sqlite_durability)
    return engine


def init_db(engine=None):
    actual_engine = engine or get_engine()
    SQLModel.metadata.create_all(actual_engine)
    migrations.run_all(actual_engine)
    return actual_engine


def get_engine():
    """Return (and lazily create) the engine for the default database."""

    global _engine
    if _engine is None:
        _engine = create_db_engine(DB_PATH)
    return _engine


def session_factory_for(engine) -> Callable[[], Session]:
    def factory() -> Session:
        return Session(engine)

    return factory


def get_session() -> Session:
    return Session(get_engine())


__all__ = [
    "create_db_engine",
    "get_engine",
    "get_session",
    "init_db",
    "session_factory_for",
]
