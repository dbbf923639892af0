"""Path helpers relating media files to the indexed root.

Paths are stored absolute (resolved) in the database; the id of a record is
derived from that string, so every caller must normalize through
`normalize` before hashing or querying.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def normalize(path: Path) -> Path:
    """Absolute, symlink-free form of path (works for paths that no longer exist)."""
    return Path(os.path.abspath(path)).resolve()


def to_relative(absolute_path: Path, library_root: Path) -> str:
    """Convert an absolute path to a string relative to library_root.

    Example:
        >>> to_relative(Path("/media/A/b/1.jpg"), Path("/media"))
        "A/b/1.jpg"
    """
    try:
        return str(absolute_path.relative_to(library_root))
    except ValueError:
        return str(absolute_path)


def media_depth(path: Path, root: Path) -> int:
    """Number of folders between root and the file.

    Example: /media/A/1.jpg under /media has depth 1, /media/A/b/1.jpg depth 2.
    """
    return len(path.relative_to(root).parts) - 1


def source_folder_for(path: Path, root: Path) -> Optional[Path]:
    """Top-level folder of root containing path, or None for files directly in root."""
    parts = path.relative_to(root).parts
    if len(parts) < 2:
        return None
    return root / parts[0]


def is_source_boundary(path: Path, root: Path) -> bool:
    """True if path sits exactly one level below root."""
    try:
        return len(path.relative_to(root).parts) == 1
    except ValueError:
        return False


def under_prefix(root: Path) -> str:
    """String prefix shared by every stored path below root."""
    return str(root).rstrip(os.sep) + os.sep


def is_utf8(path) -> bool:
    """False for names the OS handed back undecodable (surrogate-escaped).

    Ids are hashed from the UTF-8 path and SQLite stores it as UTF-8, so such
    files cannot be indexed.
    """
    try:
        str(path).encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True
