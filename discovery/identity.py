"""Deterministic pseudo-identities for top-level folders.

A folder path is hashed once; slices of the digest pick an adjective and a
noun, so the same folder always maps to the same `@adjective_noun` name
without a name registry. Distinct folders can collide on the display name;
`unique_display_name` resolves that when a new Source is written.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, NamedTuple, Union

ADJECTIVES = (
    "quiet", "bright", "gentle", "swift", "calm", "bold", "soft", "warm",
    "cool", "wild", "free", "wise", "kind", "pure", "fair", "deep",
    "high", "true", "still", "dark", "light", "clear", "fresh", "rare",
    "grand", "noble", "quick", "slow", "sharp", "smooth", "rough", "fine",
    "vast", "tiny", "sweet", "sour", "rich", "poor", "young", "old",
    "new", "ancient", "modern", "classic", "simple", "complex", "plain", "fancy",
)

NOUNS = (
    "river", "mountain", "forest", "ocean", "valley", "meadow", "stream", "lake",
    "peak", "hill", "grove", "garden", "field", "prairie", "canyon", "cliff",
    "beach", "island", "desert", "plain", "ridge", "coast", "shore", "bay",
    "harbor", "pond", "creek", "brook", "waterfall", "spring", "marsh", "swamp",
    "wood", "thicket", "clearing", "path", "trail", "road", "bridge", "stone",
    "boulder", "rock", "sand", "earth", "sky", "cloud", "wind", "rain",
)

ID_LENGTH = 16
SEED_LENGTH = 8

PathLike = Union[str, Path]


class SourceIdentity(NamedTuple):
    id: str
    display_name: str
    avatar_seed: str


def path_digest(path: PathLike) -> str:
    """SHA-256 hex digest of the path string as given (callers pass absolute paths)."""
    return hashlib.sha256(str(path).encode("utf-8")).hexdigest()


def media_id_for(path: PathLike) -> str:
    """Stable media id: fingerprint of the absolute path, not of the content."""
    return path_digest(path)[:ID_LENGTH]


def identity_for(folder_path: PathLike) -> SourceIdentity:
    digest = path_digest(folder_path)
    adjective = ADJECTIVES[int(digest[0:8], 16) % len(ADJECTIVES)]
    noun = NOUNS[int(digest[8:16], 16) % len(NOUNS)]
    return SourceIdentity(
        id=digest[:ID_LENGTH],
        display_name=f"@{adjective}_{noun}",
        avatar_seed=digest[:SEED_LENGTH],
    )


def unique_display_name(display_name: str, taken: Iterable[str]) -> str:
    """Return display_name, or display_name + the first free numeric suffix (from 2)."""
    taken = set(taken)
    if display_name not in taken:
        return display_name

    suffix = 2
    while f"{display_name}{suffix}" in taken:
        suffix += 1
    return f"{display_name}{suffix}"
