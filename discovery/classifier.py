"""Media classification by file extension."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .config import (
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_IMAGE_EXTENSIONS,
    DEFAULT_VIDEO_EXTENSIONS,
    UnfoldConfig,
)


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class MediaClassifier:
    """Map file names to a MediaType using configurable extension allow-lists.

    Hidden entries (leading dot, which also covers macOS `._*` files) and
    names listed in ignore_patterns never classify, whatever their extension.
    """

    def __init__(
        self,
        image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
        video_extensions: Iterable[str] = DEFAULT_VIDEO_EXTENSIONS,
        ignore_patterns: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
    ):
        self.image_extensions = frozenset(e.lower() for e in image_extensions)
        self.video_extensions = frozenset(e.lower() for e in video_extensions)
        self.ignore_patterns = frozenset(ignore_patterns)

    @classmethod
    def from_config(cls, config: UnfoldConfig) -> "MediaClassifier":
        return cls(
            image_extensions=config.scanner.image_extensions,
            video_extensions=config.scanner.video_extensions,
            ignore_patterns=config.scanner.ignore_patterns,
        )

    def is_hidden(self, name: str) -> bool:
        return name.startswith(".") or name in self.ignore_patterns

    def is_hidden_path(self, path: Path, root: Path) -> bool:
        """True if any component of path below root is hidden."""
        try:
            parts = path.relative_to(root).parts
        except ValueError:
            parts = path.parts
        return any(self.is_hidden(part) for part in parts)

    def classify(self, name: str) -> Optional[MediaType]:
        name = Path(name).name
        if not name or self.is_hidden(name):
            return None

        suffix = Path(name).suffix.lower()
        if suffix in self.image_extensions:
            return MediaType.IMAGE
        if suffix in self.video_extensions:
            return MediaType.VIDEO
        return None
