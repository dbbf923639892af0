"""Filesystem indexer for Unfold.

Responsible for syncing the media folder into the SQLite database.

Implements:
- full scan with a path-set diff against the stored index
- source bookkeeping for top-level folders
- single-file add/remove used by the watcher
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, TYPE_CHECKING

from sqlmodel import Session

from .classifier import MediaClassifier, MediaType
from .config import UnfoldConfig
from .database import get_engine, init_db
from .exceptions import LibraryNotFoundError
from .identity import media_id_for
from .logging_config import get_logger
from .models import Source
from .path_utils import is_utf8, media_depth, normalize, source_folder_for, to_relative
from .repository import Repository
from .utils import short_path

if TYPE_CHECKING:
    from .thumbnails import ThumbnailCache

logger = get_logger(__name__)


class ScannedMedia(NamedTuple):
    id: str
    path: Path
    source_folder: Path
    depth: int
    media_type: MediaType


class SourceSync(NamedTuple):
    sources: Dict[Path, Source]
    created: int
    removed: int
    removed_media_ids: List[str]


class IndexResult(NamedTuple):
    scanned: int
    added: int
    removed: int
    source_count: int
    duration_ms: int


def walk_library(
    root: Path,
    classifier: MediaClassifier,
) -> Iterator[Tuple[Path, MediaType]]:
    """Yield (file, media_type) for every supported regular file under root.

    Hidden directories are pruned so os.walk never descends into them;
    directories that cannot be listed and names that are not valid UTF-8 are
    logged and skipped.
    """

    def _on_error(exc: OSError) -> None:
        logger.warning(f"✗ Unable to read {exc.filename}: {exc.strerror}")

    def _readable(dir_path: Path, name: str) -> bool:
        if is_utf8(name):
            return True
        logger.warning(f"✗ Skipping {os.fsencode(dir_path / name)!r}: name is not valid UTF-8")
        return False

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dir_path = Path(dirpath)

        # Filter out hidden directories in-place so os.walk doesn't descend
        dirnames[:] = [
            d for d in dirnames if not classifier.is_hidden(d) and _readable(dir_path, d)
        ]

        for name in filenames:
            if not _readable(dir_path, name):
                continue
            media_type = classifier.classify(name)
            if media_type is None:
                continue
            file_path = dir_path / name
            try:
                if not file_path.is_file():
                    continue
            except OSError as exc:
                logger.warning(f"✗ Unable to stat {short_path(file_path)}: {exc}")
                continue
            yield file_path, media_type


def scan_entry(path: Path, root: Path, media_type: MediaType) -> Optional[ScannedMedia]:
    """Describe one file as a media record, or None for files directly in root."""
    source_folder = source_folder_for(path, root)
    if source_folder is None:
        return None
    return ScannedMedia(
        id=media_id_for(path),
        path=path,
        source_folder=source_folder,
        depth=media_depth(path, root),
        media_type=media_type,
    )


def top_level_folders(root: Path, classifier: MediaClassifier) -> List[Path]:
    """Non-hidden directories directly below root. Raises OSError if root is unreadable."""
    with os.scandir(root) as entries:
        return sorted(
            Path(entry.path)
            for entry in entries
            if entry.is_dir(follow_symlinks=False)
            and not classifier.is_hidden(entry.name)
            and is_utf8(entry.name)
        )


def sync_sources(
    repo: Repository,
    root: Path,
    classifier: MediaClassifier,
    user_id: Optional[str] = None,
) -> SourceSync:
    """Make the stored sources match the top-level folders of root.

    Creates a source for each new folder (granting it to user_id when given)
    and deletes sources whose folder has disappeared, along with their media.
    Does not commit.
    """
    folders = top_level_folders(root, classifier)

    sources: Dict[Path, Source] = {}
    created = 0
    for folder in folders:
        source, is_new = repo.ensure_source(folder)
        if user_id:
            repo.grant_source(user_id, source.id)
        if is_new:
            created += 1
            logger.info(f"[+] Source {source.display_name} ({to_relative(folder, root)})")
        sources[folder] = source

    live = {str(folder) for folder in folders}
    removed = 0
    removed_media_ids: List[str] = []
    for source in repo.sources_under(root):
        # Only sources that belong to this root's top level
        if Path(source.folder_path).parent != root or source.folder_path in live:
            continue
        media_ids = repo.delete_source(source.id)
        removed_media_ids.extend(media_ids)
        removed += 1
        logger.info(f"[-] Source {source.display_name} ({len(media_ids)} media)")

    return SourceSync(sources, created, removed, removed_media_ids)


def index_library(
    config: UnfoldConfig,
    root: Optional[Path] = None,
    user_id: Optional[str] = None,
    thumbnails: Optional["ThumbnailCache"] = None,
) -> IndexResult:
    """Index root (the configured library by default) and sync the database.

    The diff inserts exactly the scanned paths missing from the store and
    deletes exactly the stored paths under root the scan did not see, in
    one commit.

    :param config: Loaded Unfold configuration.
    :param root: Optional folder to index instead of the configured library.
    :param user_id: User to grant newly seen sources to.
    :param thumbnails: Cache to drop artifacts of removed media from.
    :return: IndexResult with scan statistics.
    """
    started = time.monotonic()
    root = normalize(root or config.library_path)
    if not root.is_dir():
        raise LibraryNotFoundError(f"Library path does not exist: {root}")

    classifier = MediaClassifier.from_config(config)
    logger.info(f"[INDEX] {root}")

    # Ensure DB is initialized (schema created)
    init_db()

    scanned: Dict[str, ScannedMedia] = {}
    for path, media_type in walk_library(root, classifier):
        entry = scan_entry(path, root, media_type)
        if entry is not None:
            scanned[str(entry.path)] = entry

    with Session(get_engine()) as session:
        repo = Repository(session)
        stored = repo.media_paths_under(root)

        to_add = [scanned[path] for path in sorted(scanned.keys() - stored.keys())]
        removed_ids = [stored[path] for path in sorted(stored.keys() - scanned.keys())]

        sync = sync_sources(repo, root, classifier, user_id)
        repo.delete_media_ids(removed_ids)

        sources = dict(sync.sources)
        added = 0
        for entry in to_add:
            source = sources.get(entry.source_folder)
            if source is None:
                source, _ = repo.ensure_source(entry.source_folder)
                if user_id:
                    repo.grant_source(user_id, source.id)
                sources[entry.source_folder] = source

            if repo.add_media(
                media_id=entry.id,
                path=entry.path,
                source_id=source.id,
                depth=entry.depth,
                media_type=entry.media_type.value,
            ):
                added += 1
                logger.debug(f"[+] {short_path(entry.path)}")

        repo.commit()
        source_count = len(repo.sources_under(root))

    if thumbnails and removed_ids:
        thumbnails.remove(removed_ids)

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        f"[INDEX] Done: {len(scanned)} scanned, {added} added, "
        f"{len(removed_ids)} removed, {source_count} sources ({duration_ms} ms)"
    )
    return IndexResult(
        scanned=len(scanned),
        added=added,
        removed=len(removed_ids),
        source_count=source_count,
        duration_ms=duration_ms,
    )


def add_media_file(
    path: Path,
    root: Path,
    classifier: MediaClassifier,
    user_id: Optional[str] = None,
) -> bool:
    """Index a single file if it is a supported, visible file below a top-level folder.

    Returns True if a new record was inserted.
    """
    if not is_utf8(path):
        logger.warning(f"✗ Skipping {os.fsencode(path)!r}: name is not valid UTF-8")
        return False
    if classifier.is_hidden_path(path, root):
        return False
    media_type = classifier.classify(path.name)
    if media_type is None or not path.is_file():
        return False
    entry = scan_entry(path, root, media_type)
    if entry is None:
        return False

    with Session(get_engine()) as session:
        repo = Repository(session)
        source, created = repo.ensure_source(entry.source_folder)
        if user_id:
            repo.grant_source(user_id, source.id)
        if created:
            logger.info(f"[+] Source {source.display_name}")

        added = repo.add_media(
            media_id=entry.id,
            path=entry.path,
            source_id=source.id,
            depth=entry.depth,
            media_type=entry.media_type.value,
        )
        repo.commit()

    if added:
        logger.info(f"[+] {short_path(path)}")
    return added


def remove_media_path(path: Path, thumbnails: Optional["ThumbnailCache"] = None) -> List[str]:
    """Delete the record at path (or every record below it). Returns removed ids."""
    with Session(get_engine()) as session:
        repo = Repository(session)
        media_ids = repo.delete_media_by_path(path)
        repo.commit()

    if media_ids:
        if thumbnails:
            thumbnails.remove(media_ids)
        if len(media_ids) == 1:
            logger.info(f"[-] {short_path(path)}")
        else:
            logger.info(f"[-] {path.name} ({len(media_ids)} media)")
    return media_ids
