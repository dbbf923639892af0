"""Database connection and session management using SQLModel."""

from __future__ import annotations

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "unfold.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def make_engine(url: str):
    """Create an engine with the pragmas every Unfold connection expects.

    check_same_thread=False: the watcher, the thumbnail pool and FastAPI share it.
    """
    new_engine = create_engine(url, connect_args={"check_same_thread": False})
    event.listen(new_engine, "connect", _set_sqlite_pragmas)
    return new_engine


engine = make_engine(SQLITE_URL)


def init_db() -> None:
    """Create database tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    # WAL lets the watcher write while feed requests read
    with get_engine().connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(get_engine())


def reset_database() -> None:
    """Delete the database file and recreate it."""
    get_engine().dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()


def get_engine():
    """Return the global engine instance."""
    return engine
