"""Thumbnail generation for Unfold.

Generates normalized previews, cover-cropped to a fixed bounding box, from
images and from one early frame of each video. Artifacts are stored as
`thumbnails/{media_id}.webp` beside a `cache.json` manifest that records the
source fingerprint (size + mtime) each artifact was built from; a changed
fingerprint is the only invalidation signal.
"""

from __future__ import annotations

import dataclasses
import json
import os
import shutil
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Set, Union

from PIL import Image, ImageOps
from sqlmodel import Session

from .classifier import MediaType
from .config import UnfoldConfig
from .database import get_engine
from .exceptions import BatchTooLargeError, MediaNotFoundError, ThumbnailError
from .logging_config import get_logger
from .repository import Repository
from .utils import short_path

logger = get_logger(__name__)

MANIFEST_NAME = "cache.json"

# Position of the extracted video frame, as a fraction of the duration
VIDEO_FRAME_POSITION = 0.01

# format name -> (Pillow format, file suffix, content type)
_FORMATS = {
    "webp": ("WEBP", ".webp", "image/webp"),
    "jpeg": ("JPEG", ".jpg", "image/jpeg"),
    "jpg": ("JPEG", ".jpg", "image/jpeg"),
    "png": ("PNG", ".png", "image/png"),
}


@dataclasses.dataclass
class ThumbnailCacheEntry:
    media_id: str
    cache_path: str
    fingerprint: str
    generated_at: float


@dataclasses.dataclass
class ThumbnailResult:
    media_id: str
    status: str  # "ok" | "not_found" | "error"
    path: Optional[Path] = None
    error: Optional[str] = None


def file_fingerprint(path: Path) -> str:
    """Cheap change signal: size + mtime. Not a content hash."""
    stat = path.stat()
    return f"{stat.st_size}-{stat.st_mtime_ns}"


class ThumbnailCache:
    """On-disk thumbnail cache keyed by media id.

    Generation for distinct ids may run concurrently; calls for the same id
    are serialized so a burst of requests produces one generation.
    """

    def __init__(
        self,
        cache_dir: Path,
        width: int = 400,
        height: int = 400,
        quality: int = 80,
        fmt: str = "webp",
        batch_limit: int = 100,
        workers: int = 4,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        timeout: int = 20,
    ):
        if fmt not in _FORMATS:
            raise ValueError(f"Unsupported thumbnail format: {fmt}")
        self.cache_dir = Path(cache_dir)
        self.width = width
        self.height = height
        self.quality = quality
        self.pil_format, self.extension, self.media_type = _FORMATS[fmt]
        self.batch_limit = batch_limit
        self.workers = max(1, workers)
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

        self.hits = 0
        self.generated = 0
        self._entries: Dict[str, ThumbnailCacheEntry] = {}
        self._manifest_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._load_manifest()

    @classmethod
    def from_config(cls, config: UnfoldConfig) -> "ThumbnailCache":
        thumbs = config.thumbnails
        return cls(
            config.thumbnails_dir,
            width=thumbs.width,
            height=thumbs.height,
            quality=thumbs.quality,
            fmt=thumbs.format,
            batch_limit=thumbs.batch_limit,
            workers=thumbs.workers,
            ffmpeg=thumbs.ffmpeg,
            ffprobe=thumbs.ffprobe,
            timeout=thumbs.timeout,
        )

    @property
    def manifest_path(self) -> Path:
        return self.cache_dir / MANIFEST_NAME

    def thumbnail_path(self, media_id: str) -> Path:
        return self.cache_dir / f"{media_id}{self.extension}"

    def entry(self, media_id: str) -> Optional[ThumbnailCacheEntry]:
        return self._entries.get(media_id)

    # --- Manifest ---

    def _load_manifest(self) -> None:
        if not self.manifest_path.exists():
            return
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Thumbnail manifest unreadable, starting empty: {exc}")
            return

        for item in data:
            try:
                entry = ThumbnailCacheEntry(**item)
            except TypeError:
                continue
            self._entries[entry.media_id] = entry
        logger.debug(f"Loaded {len(self._entries)} cached thumbnails")

    def _save_manifest(self) -> None:
        """Write the manifest atomically. Caller holds the manifest lock."""
        payload = [dataclasses.asdict(entry) for entry in self._entries.values()]
        tmp_path = self.manifest_path.with_name(MANIFEST_NAME + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.manifest_path)

    # --- Generation ---

    def _lock_for(self, media_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(media_id)
            if lock is None:
                lock = self._locks[media_id] = threading.Lock()
            return lock

    def _drop_locks(self, should_drop: Callable[[str], bool]) -> None:
        """Forget per-id locks nobody holds; a held lock stays with its generation."""
        with self._locks_guard:
            for media_id in [m for m, lock in self._locks.items() if not lock.locked()]:
                if should_drop(media_id):
                    del self._locks[media_id]

    def _render(self, source: Union[Path, BinaryIO], thumb_path: Path) -> None:
        thumb_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = thumb_path.with_name(thumb_path.name + ".tmp")
        try:
            with Image.open(source) as im:
                im = ImageOps.exif_transpose(im)
                im = im.convert("RGB")
                im = ImageOps.fit(
                    im,
                    (self.width, self.height),
                    method=Image.Resampling.LANCZOS,
                    centering=(0.5, 0.5),
                )
                im.save(tmp_path, format=self.pil_format, quality=self.quality)
            os.replace(tmp_path, thumb_path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _probe_duration(self, source_path: Path) -> Optional[float]:
        ffprobe = shutil.which(self.ffprobe)
        if not ffprobe:
            return None
        try:
            proc = subprocess.run(
                [
                    ffprobe, "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "json", str(source_path),
                ],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug(f"ffprobe failed for {source_path.name}: {exc}")
            return None

        if proc.returncode != 0:
            return None
        try:
            return float(json.loads(proc.stdout)["format"]["duration"])
        except (ValueError, KeyError, TypeError):
            return None

    def _extract_video_frame(self, source_path: Path) -> bytes:
        """Return one PNG-encoded frame taken near the start of the video."""
        ffmpeg = shutil.which(self.ffmpeg)
        if not ffmpeg:
            raise ThumbnailError(f"ffmpeg not found ({self.ffmpeg}); cannot read {source_path.name}")

        duration = self._probe_duration(source_path)
        offset = duration * VIDEO_FRAME_POSITION if duration else 0.0
        cmd = [
            ffmpeg, "-nostdin", "-v", "error",
            "-ss", f"{offset:.3f}", "-i", str(source_path),
            "-frames:v", "1",
            "-f", "image2pipe", "-vcodec", "png", "-",
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ThumbnailError(f"ffmpeg timed out on {source_path.name}") from exc
        except OSError as exc:
            raise ThumbnailError(f"ffmpeg could not run on {source_path.name}: {exc}") from exc

        if proc.returncode != 0 or not proc.stdout:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise ThumbnailError(f"ffmpeg failed on {source_path.name}: {stderr or 'no frame'}")
        return proc.stdout

    def get_thumbnail(self, media_id: str, source_path: Path, media_type: str) -> Path:
        """Return the cached thumbnail for media_id, regenerating it when stale.

        Raises MediaNotFoundError if the source file is gone and
        ThumbnailError if it exists but cannot be turned into a preview.
        """
        source_path = Path(source_path)
        with self._lock_for(media_id):
            try:
                fingerprint = file_fingerprint(source_path)
            except FileNotFoundError as exc:
                raise MediaNotFoundError(f"Media file missing: {source_path}") from exc
            except OSError as exc:
                raise ThumbnailError(f"Unable to stat {source_path}: {exc}") from exc

            cached = self._entries.get(media_id)
            if (
                cached
                and cached.fingerprint == fingerprint
                and Path(cached.cache_path).exists()
            ):
                with self._manifest_lock:
                    self.hits += 1
                return Path(cached.cache_path)

            thumb_path = self.thumbnail_path(media_id)
            try:
                if media_type == MediaType.VIDEO.value:
                    frame = self._extract_video_frame(source_path)
                    self._render(BytesIO(frame), thumb_path)
                else:
                    self._render(source_path, thumb_path)
            except ThumbnailError:
                raise
            except (OSError, ValueError, Image.DecompressionBombError) as exc:
                raise ThumbnailError(f"Failed to render {short_path(source_path)}: {exc}") from exc

            with self._manifest_lock:
                self._entries[media_id] = ThumbnailCacheEntry(
                    media_id=media_id,
                    cache_path=str(thumb_path),
                    fingerprint=fingerprint,
                    generated_at=time.time(),
                )
                self._save_manifest()
                self.generated += 1

            logger.debug(f"✓ thumbnail {short_path(source_path)}")
            return thumb_path

    def get_for_media(self, media_id: str) -> Path:
        """Look media_id up in the index and return its thumbnail."""
        with Session(get_engine()) as session:
            media = Repository(session).get_media(media_id)
            if media is None:
                raise MediaNotFoundError(f"Media not found: {media_id}")
            source_path, media_type = Path(media.path), media.media_type
        return self.get_thumbnail(media_id, source_path, media_type)

    def _batch_item(self, media_id: str) -> ThumbnailResult:
        try:
            path = self.get_for_media(media_id)
        except MediaNotFoundError as exc:
            return ThumbnailResult(media_id, "not_found", error=str(exc))
        except ThumbnailError as exc:
            logger.error(f"✗ thumbnail {media_id}: {exc}")
            return ThumbnailResult(media_id, "error", error=str(exc))
        return ThumbnailResult(media_id, "ok", path=path)

    def batch_get(self, media_ids: Iterable[str]) -> List[ThumbnailResult]:
        """Fetch thumbnails for many ids; each id succeeds or fails on its own."""
        media_ids = list(media_ids)
        if not media_ids:
            raise ValueError("At least one media id is required")
        if len(media_ids) > self.batch_limit:
            raise BatchTooLargeError(
                f"Too many ids: {len(media_ids)} (maximum {self.batch_limit})"
            )

        with ThreadPoolExecutor(max_workers=min(self.workers, len(media_ids))) as pool:
            return list(pool.map(self._batch_item, media_ids))

    def generate_missing(self, regenerate: bool = False) -> Dict[str, int]:
        """Batch mode: bring every indexed media item's thumbnail up to date."""
        with Session(get_engine()) as session:
            media_items = [
                (m.id, Path(m.path), m.media_type) for m in Repository(session).get_all_media()
            ]

        if regenerate:
            logger.info("Regenerating all thumbnails...")
            self.clear()
        else:
            logger.info("Generating missing thumbnails...")

        stats = {"generated": 0, "cached": 0, "failed": 0, "missing": 0}
        total = len(media_items)
        logger.info(f"{total} media items to process for thumbnails")

        for idx, (media_id, path, media_type) in enumerate(media_items, start=1):
            logger.debug(f"[{idx}/{total}] {short_path(path)}")
            before = self.generated
            try:
                self.get_thumbnail(media_id, path, media_type)
            except MediaNotFoundError:
                logger.warning(f"Media file not found on disk: {path}")
                stats["missing"] += 1
                continue
            except ThumbnailError as exc:
                logger.error(f"Failed to generate thumbnail for {short_path(path)}: {exc}")
                stats["failed"] += 1
                continue

            if self.generated > before:
                stats["generated"] += 1
            else:
                stats["cached"] += 1

        logger.info("Thumbnail generation complete.")
        return stats

    # --- Removal ---

    def remove(self, media_ids: Iterable[str]) -> int:
        """Drop cache entries and artifacts for media ids. Returns artifacts deleted."""
        media_ids = set(media_ids)
        deleted = 0
        with self._manifest_lock:
            changed = False
            for media_id in media_ids:
                entry = self._entries.pop(media_id, None)
                changed = changed or entry is not None
                thumb_path = Path(entry.cache_path) if entry else self.thumbnail_path(media_id)
                try:
                    if thumb_path.exists():
                        thumb_path.unlink()
                        deleted += 1
                except OSError as exc:
                    logger.error(f"Failed to delete thumbnail {thumb_path}: {exc}")
            if changed:
                self._save_manifest()
        self._drop_locks(media_ids.__contains__)
        return deleted

    def cleanup_orphans(self, valid_ids: Set[str]) -> int:
        """Remove artifacts and manifest entries with no matching media record.

        Returns count of deleted artifact files.
        """
        deleted = 0
        with self._manifest_lock:
            for thumb_file in self.cache_dir.iterdir():
                if thumb_file.name == MANIFEST_NAME or thumb_file.name.endswith(".tmp"):
                    continue
                if not thumb_file.is_file() or thumb_file.stem in valid_ids:
                    continue
                try:
                    thumb_file.unlink()
                    deleted += 1
                except OSError as exc:
                    logger.error(f"Failed to delete orphaned thumbnail {thumb_file}: {exc}")

            stale = [media_id for media_id in self._entries if media_id not in valid_ids]
            for media_id in stale:
                del self._entries[media_id]
            if stale:
                self._save_manifest()
        self._drop_locks(lambda media_id: media_id not in valid_ids)

        logger.info(f"Cleaned up {deleted} orphaned thumbnails")
        return deleted

    def clear(self) -> int:
        """Delete every artifact and empty the manifest. Returns artifacts deleted."""
        deleted = 0
        with self._manifest_lock:
            for thumb_file in self.cache_dir.iterdir():
                if not self._is_artifact(thumb_file):
                    continue
                try:
                    thumb_file.unlink()
                    deleted += 1
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.error(f"Failed to delete thumbnail {thumb_file}: {exc}")
            self._entries.clear()
            self._save_manifest()
        self._drop_locks(lambda media_id: True)
        logger.info("Thumbnail cache cleared")
        return deleted

    @staticmethod
    def _is_artifact(path: Path) -> bool:
        return path.name != MANIFEST_NAME and not path.name.endswith(".tmp") and path.is_file()

    def stats(self) -> Dict[str, object]:
        size = 0
        for thumb_file in self.cache_dir.iterdir():
            if not self._is_artifact(thumb_file):
                continue
            # Renders replace and clean up files while we list
            try:
                size += thumb_file.stat().st_size
            except FileNotFoundError:
                continue
        return {
            "total_cached": len(self._entries),
            "cache_dir": str(self.cache_dir),
            "size_bytes": size,
            "generated": self.generated,
            "hits": self.hits,
        }
