"""Integrity sweeps for Unfold.

Reconciles stored media records against the live filesystem and prunes
thumbnail artifacts that no longer have a record. Every destructive step
reports exact counts.
"""

from __future__ import annotations

import os
import stat
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional, TYPE_CHECKING

from sqlmodel import Session

from .classifier import MediaType
from .database import get_engine
from .exceptions import OperationInProgressError
from .logging_config import get_logger
from .repository import Repository
from .utils import RunGuard, short_path

if TYPE_CHECKING:
    from .thumbnails import ThumbnailCache

logger = get_logger(__name__)


class FileStatus(NamedTuple):
    exists: bool
    is_file: bool
    size: Optional[int]
    error: Optional[str]


class IntegrityReport(NamedTuple):
    total: int
    valid: int
    missing: int
    unreadable: int
    removed_ids: List[str]
    started_at: datetime
    duration_ms: int
    success: bool


class CleanupReport(NamedTuple):
    invalid_records_removed: int
    orphaned_thumbnails_removed: int
    total_removed: int


def file_status(path: Path) -> FileStatus:
    """Stat path without raising; error is set when the answer is unknown."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return FileStatus(exists=False, is_file=False, size=None, error=None)
    except NotADirectoryError:
        return FileStatus(exists=False, is_file=False, size=None, error=None)
    except OSError as exc:
        return FileStatus(exists=False, is_file=False, size=None, error=str(exc))
    is_file = stat.S_ISREG(st.st_mode)
    return FileStatus(exists=True, is_file=is_file, size=st.st_size if is_file else None, error=None)


class IntegritySweeper:
    """Non-reentrant reconciliation of the index with the filesystem."""

    def __init__(self, thumbnails: Optional["ThumbnailCache"] = None):
        self.thumbnails = thumbnails
        self.last_check_at: Optional[datetime] = None
        self._guard = RunGuard("Integrity check")

    @property
    def running(self) -> bool:
        return self._guard.running

    def check(self) -> IntegrityReport:
        """Remove records whose path no longer resolves to a regular file.

        Records whose file cannot be stat'ed for another reason (permissions,
        I/O) are kept and counted as unreadable.
        """
        with self._guard.hold():
            started_at = datetime.now(timezone.utc)
            started = time.monotonic()
            logger.info("[CHECK] Starting integrity check")

            with Session(get_engine()) as session:
                repo = Repository(session)
                records = [(m.id, Path(m.path)) for m in repo.get_all_media()]

                missing_ids: List[str] = []
                unreadable = 0
                for media_id, path in records:
                    status = file_status(path)
                    if status.error:
                        unreadable += 1
                        logger.warning(f"✗ Unable to check {short_path(path)}: {status.error}")
                    elif not status.is_file:
                        missing_ids.append(media_id)
                        logger.info(f"[-] Missing: {short_path(path)}")

                repo.delete_media_ids(missing_ids)
                repo.commit()

            if self.thumbnails and missing_ids:
                self.thumbnails.remove(missing_ids)

            self.last_check_at = started_at
            duration_ms = int((time.monotonic() - started) * 1000)
            total = len(records)
            logger.info(
                f"[CHECK] Done: {total} checked, {len(missing_ids)} removed, "
                f"{unreadable} unreadable ({duration_ms} ms)"
            )
            return IntegrityReport(
                total=total,
                valid=total - len(missing_ids) - unreadable,
                missing=len(missing_ids),
                unreadable=unreadable,
                removed_ids=missing_ids,
                started_at=started_at,
                duration_ms=duration_ms,
                success=unreadable == 0,
            )

    def cleanup(self) -> CleanupReport:
        """Drop malformed records and thumbnail artifacts without a record."""
        with self._guard.hold():
            logger.info("[CHECK] Starting cleanup")
            with Session(get_engine()) as session:
                repo = Repository(session)
                invalid = repo.get_invalid_media({t.value for t in MediaType})
                invalid_ids = [m.id for m in invalid]
                for media in invalid:
                    logger.info(f"[-] Invalid record: {media.id} ({media.media_type!r})")
                removed = repo.delete_media_ids(invalid_ids)
                repo.commit()
                valid_ids = repo.get_all_media_ids()

            orphaned = self.thumbnails.cleanup_orphans(valid_ids) if self.thumbnails else 0

            logger.info(f"[CHECK] Cleanup done: {removed} records, {orphaned} thumbnails")
            return CleanupReport(
                invalid_records_removed=removed,
                orphaned_thumbnails_removed=orphaned,
                total_removed=removed + orphaned,
            )


class PeriodicSweep:
    """Background thread running IntegritySweeper.check every interval seconds."""

    def __init__(self, sweeper: IntegritySweeper, interval: float):
        self.sweeper = sweeper
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="UnfoldIntegritySweep"
        )
        self._thread.start()
        logger.info(f"[CHECK] Periodic integrity check every {self.interval:.0f}s")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.sweeper.check()
            except OperationInProgressError:
                logger.info("[CHECK] Skipped: a check is already running")
            except Exception as exc:
                logger.error(f"Periodic integrity check failed: {exc}")
