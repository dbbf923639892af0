"""Alembic migration helpers for Unfold.

This is the only module in the project that imports alembic directly.
Everything else (CLI, serve) goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3
from typing import Optional, Tuple

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from .config import PROJECT_ROOT
from . import database


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig without an ini file, pointed at migrations/."""
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _backup_db() -> None:
    """Copy unfold.db -> unfold.db.bak (overwrite previous backup)."""
    if database.DB_PATH.exists():
        shutil.copy2(database.DB_PATH, database.DB_PATH.with_suffix(".db.bak"))


def _alembic_version_exists() -> bool:
    if not database.DB_PATH.exists():
        return False
    conn = sqlite3.connect(database.DB_PATH)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        return cur.fetchone() is not None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``, copying the database first if *backup*."""
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (no alembic_version) to head.

    No-op when the database does not exist or is already managed.
    """
    if not database.DB_PATH.exists() or _alembic_version_exists():
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> Tuple[Optional[str], str]:
    """Return (current_revision, head_revision).

    current_revision is None when the DB does not exist or has never
    been stamped/migrated.
    """
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"

    if not _alembic_version_exists():
        return None, head_rev

    conn = sqlite3.connect(database.DB_PATH)
    try:
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return (row[0] if row else None), head_rev
    finally:
        conn.close()
