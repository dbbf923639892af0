"""Discovery service: the single owner of Unfold's long-lived state.

Holds the watcher handle, the thumbnail cache, the integrity sweeper and
the indexing guard, and exposes the calls the serving layer (HTTP, CLI)
makes. Nothing here is module-level, so several services (one per test,
one per root) can coexist.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

from sqlmodel import Session

from .config import UnfoldConfig
from .database import get_engine, init_db
from .exceptions import (
    AccessDeniedError,
    LibraryNotFoundError,
    MediaNotFoundError,
    SourceNotFoundError,
    WatcherError,
)
from .feed import FeedCandidate, FeedPage, RankingWeights, build_feed_page
from .folders import FolderNode, relative_folder
from .integrity import (
    CleanupReport,
    FileStatus,
    IntegrityReport,
    IntegritySweeper,
    PeriodicSweep,
    file_status,
)
from .logging_config import get_logger
from .models import Source
from .monitor import LibraryWatcher
from .path_utils import normalize
from .repository import Repository
from .scanner import IndexResult, index_library
from .thumbnails import ThumbnailCache, ThumbnailResult
from .utils import RunGuard

logger = get_logger(__name__)


class IndexOutcome(NamedTuple):
    result: IndexResult
    watcher_active: bool
    watcher_error: Optional[str]


class DiscoveryService:
    def __init__(
        self,
        config: UnfoldConfig,
        thumbnails: Optional[ThumbnailCache] = None,
        watcher: Optional[LibraryWatcher] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.thumbnails = thumbnails or ThumbnailCache.from_config(config)
        self.watcher = watcher or LibraryWatcher(config, thumbnails=self.thumbnails)
        self.sweeper = IntegritySweeper(self.thumbnails)
        self.weights = RankingWeights.from_config(config.feed)
        self._rng = rng
        self._index_guard = RunGuard("Indexing")
        self._periodic: Optional[PeriodicSweep] = None
        init_db()

    # --- Indexing ---

    @property
    def indexing(self) -> bool:
        return self._index_guard.running

    def trigger_index(
        self,
        root: Optional[Path] = None,
        user_id: Optional[str] = None,
        watch: bool = True,
    ) -> IndexOutcome:
        """Index root, then (re)start the watcher on it.

        Raises OperationInProgressError if an index run is already active.
        """
        root = normalize(root or self.config.library_path)
        with self._index_guard.hold():
            result = index_library(self.config, root, user_id, self.thumbnails)

        watcher_error = None
        if watch and self.config.monitoring.enabled:
            try:
                self.watcher.start(root, user_id)
            except (WatcherError, LibraryNotFoundError) as exc:
                watcher_error = str(exc)
        return IndexOutcome(result, self.watcher.is_running, watcher_error)

    def index_status(self) -> Dict[str, object]:
        watcher = self.watcher.status()
        with Session(get_engine()) as session:
            repo = Repository(session)
            media_count, source_count = repo.count_media(), repo.count_sources()
        return {
            "indexing": self.indexing,
            "watcher": watcher.state.value,
            "root": str(watcher.root) if watcher.root else None,
            "watcher_error": watcher.last_error,
            "events_processed": watcher.processed,
            "media_count": media_count,
            "source_count": source_count,
        }

    def stop_watcher(self) -> None:
        self.watcher.stop()

    # --- Sources ---

    def list_sources(self, user_id: Optional[str] = None) -> List[Source]:
        with Session(get_engine()) as session:
            return Repository(session).list_sources(user_id)

    def get_source(self, source_id: str) -> Source:
        with Session(get_engine()) as session:
            source = Repository(session).get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        return source

    # --- Feed ---

    def get_feed_page(
        self,
        user_id: str,
        page: int = 0,
        page_size: Optional[int] = None,
        last_source_id: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> FeedPage:
        """Rank one page of the user's feed.

        page_size is clamped to the configured maximum. With a source filter
        every item shares one source, so the diversity rule is not applied.
        """
        if page < 0:
            raise ValueError("page must not be negative")
        page_size = page_size or self.config.feed.page_size
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        page_size = min(page_size, self.config.feed.max_page_size)

        with Session(get_engine()) as session:
            repo = Repository(session)
            if source_id is not None and repo.get_source(source_id) is None:
                raise SourceNotFoundError(f"Source not found: {source_id}")
            candidates = repo.get_feed_candidates(user_id, source_id)

        return build_feed_page(
            candidates,
            page=page,
            page_size=page_size,
            last_source_id=last_source_id,
            weights=self.weights,
            rng=self._rng,
            diversity=source_id is None,
        )

    def list_interacted(self, user_id: str, flag: str) -> List[FeedCandidate]:
        with Session(get_engine()) as session:
            return Repository(session).get_interacted_media(user_id, flag)

    # --- Interactions ---

    def _toggle(self, flag: str, media_id: str, source_id: str, user_id: str) -> bool:
        with Session(get_engine()) as session:
            repo = Repository(session)
            state = repo.toggle_interaction(user_id, source_id, media_id, flag)
            repo.commit()
        logger.debug(f"{flag}={state} user={user_id} media={media_id}")
        return state

    def toggle_like(self, media_id: str, source_id: str, user_id: str) -> bool:
        return self._toggle("liked", media_id, source_id, user_id)

    def toggle_save(self, media_id: str, source_id: str, user_id: str) -> bool:
        return self._toggle("saved", media_id, source_id, user_id)

    def toggle_hide(self, media_id: str, source_id: str, user_id: str) -> bool:
        return self._toggle("hidden", media_id, source_id, user_id)

    def record_view(self, media_id: str, source_id: str, user_id: str) -> int:
        with Session(get_engine()) as session:
            repo = Repository(session)
            interaction = repo.record_view(user_id, source_id, media_id)
            view_count = interaction.view_count
            repo.commit()
        return view_count

    @staticmethod
    def _granted_source(repo: Repository, user_id: str, source_id: str) -> Source:
        source = repo.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        if not repo.has_grant(user_id, source_id):
            raise AccessDeniedError(f"Source not granted to {user_id}: {source_id}")
        return source

    def toggle_hidden_folder(self, user_id: str, source_id: str, folder_path: str) -> bool:
        """Hide (or unhide) a sub-folder of a source, given relative to the source folder."""
        with Session(get_engine()) as session:
            repo = Repository(session)
            source = self._granted_source(repo, user_id, source_id)

            source_folder = Path(source.folder_path)
            folder = normalize(source_folder / folder_path)
            if folder == source_folder or source_folder not in folder.parents:
                raise ValueError(f"Not a sub-folder of the source: {folder_path}")

            hidden = repo.toggle_hidden_folder(user_id, source_id, str(folder))
            repo.commit()
        return hidden

    def list_hidden_folders(self, user_id: str, source_id: str) -> List[str]:
        """The user's hidden folders in a source, relative to the source folder."""
        with Session(get_engine()) as session:
            repo = Repository(session)
            source = self._granted_source(repo, user_id, source_id)
            folders = repo.hidden_folders(user_id, source_id)
        source_folder = Path(source.folder_path)
        return [relative_folder(Path(folder), source_folder) for folder in folders]

    def folder_tree(self, user_id: str, source_id: str) -> FolderNode:
        with Session(get_engine()) as session:
            repo = Repository(session)
            self._granted_source(repo, user_id, source_id)
            tree = repo.folder_tree(user_id, source_id)
        if tree is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        return tree

    # --- Media & thumbnails ---

    def get_media_file(self, media_id: str) -> Tuple[Path, str]:
        """Return (path, media_type) of an indexed file that still exists."""
        with Session(get_engine()) as session:
            media = Repository(session).get_media(media_id)
            if media is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            path, media_type = Path(media.path), media.media_type
        if not path.is_file():
            raise MediaNotFoundError(f"Media file missing: {media_id}")
        return path, media_type

    def get_thumbnail(self, media_id: str) -> Path:
        return self.thumbnails.get_for_media(media_id)

    def batch_thumbnails(self, media_ids: List[str]) -> List[ThumbnailResult]:
        return self.thumbnails.batch_get(media_ids)

    # --- Integrity ---

    def run_integrity_check(self) -> IntegrityReport:
        return self.sweeper.check()

    def run_cleanup(self) -> CleanupReport:
        return self.sweeper.cleanup()

    def file_status(self, path: str) -> Tuple[Path, FileStatus]:
        """Stat one absolute path the way the integrity sweep does."""
        if not Path(path).is_absolute():
            raise ValueError(f"Path must be absolute: {path}")
        resolved = normalize(path)
        return resolved, file_status(resolved)

    def start_periodic_sweep(self) -> None:
        minutes = self.config.integrity.interval_minutes
        if minutes <= 0 or self._periodic is not None:
            return
        self._periodic = PeriodicSweep(self.sweeper, minutes * 60)
        self._periodic.start()

    def health(self) -> Dict[str, object]:
        watcher = self.watcher.status()
        with Session(get_engine()) as session:
            repo = Repository(session)
            media_count, source_count = repo.count_media(), repo.count_sources()
        last_check = self.sweeper.last_check_at
        return {
            "status": "degraded" if watcher.last_error else "ok",
            "media_count": media_count,
            "source_count": source_count,
            "indexing": self.indexing,
            "watcher": watcher.state.value,
            "watcher_error": watcher.last_error,
            "integrity_running": self.sweeper.running,
            "last_integrity_check": last_check.isoformat() if last_check else None,
            "thumbnails": self.thumbnails.stats(),
        }

    def shutdown(self) -> None:
        if self._periodic is not None:
            self._periodic.stop()
            self._periodic = None
        self.watcher.stop()
