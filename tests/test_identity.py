"""Tests for source identities."""

import hashlib
import re
from pathlib import Path

from sqlmodel import Session

from discovery import repository
from discovery.database import get_engine
from discovery.identity import (
    ADJECTIVES,
    NOUNS,
    SourceIdentity,
    identity_for,
    media_id_for,
    unique_display_name,
)
from discovery.repository import Repository


def test_identity_is_deterministic():
    path = Path("/srv/media/Holidays 2019")
    assert identity_for(path) == identity_for(path)
    assert identity_for(path) == identity_for(str(path))


def test_identity_shape():
    identity = identity_for("/srv/media/A")
    assert re.fullmatch(r"[0-9a-f]{16}", identity.id)
    assert re.fullmatch(r"[0-9a-f]{8}", identity.avatar_seed)
    assert identity.id.startswith(identity.avatar_seed)

    adjective, noun = identity.display_name[1:].split("_", 1)
    assert identity.display_name.startswith("@")
    assert adjective in ADJECTIVES
    assert noun in NOUNS


def test_identity_uses_separate_digest_slices():
    path = "/srv/media/B"
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()
    adjective = ADJECTIVES[int(digest[0:8], 16) % len(ADJECTIVES)]
    noun = NOUNS[int(digest[8:16], 16) % len(NOUNS)]
    assert identity_for(path).display_name == f"@{adjective}_{noun}"


def test_distinct_paths_get_distinct_ids():
    ids = {identity_for(f"/srv/media/folder{i}").id for i in range(200)}
    assert len(ids) == 200


def test_media_id_is_path_fingerprint():
    assert media_id_for("/srv/media/A/1.jpg") == media_id_for(Path("/srv/media/A/1.jpg"))
    assert media_id_for("/srv/media/A/1.jpg") != media_id_for("/srv/media/A/2.jpg")
    assert len(media_id_for("/srv/media/A/1.jpg")) == 16


def test_unique_display_name_suffixes():
    assert unique_display_name("@calm_river", []) == "@calm_river"
    assert unique_display_name("@calm_river", ["@calm_river"]) == "@calm_river2"
    assert unique_display_name(
        "@calm_river", ["@calm_river", "@calm_river2"]
    ) == "@calm_river3"


def test_ensure_source_enforces_unique_names(db, monkeypatch, tmp_path):
    """Two folders hashing to the same name get a numeric suffix on write."""

    def fake_identity(folder_path):
        real = identity_for(folder_path)
        return SourceIdentity(real.id, "@calm_river", real.avatar_seed)

    monkeypatch.setattr(repository, "identity_for", fake_identity)

    with Session(get_engine()) as session:
        repo = Repository(session)
        first, created_first = repo.ensure_source(tmp_path / "one")
        second, created_second = repo.ensure_source(tmp_path / "two")
        again, created_again = repo.ensure_source(tmp_path / "one")
        repo.commit()

        assert created_first and created_second
        assert not created_again
        assert first.display_name == "@calm_river"
        assert second.display_name == "@calm_river2"
        assert again.display_name == "@calm_river"
