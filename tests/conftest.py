"""Shared fixtures: a temp SQLite database, a media folder and a config."""

from pathlib import Path

import pytest
from PIL import Image

from discovery.config import (
    FeedConfig,
    LibraryConfig,
    MonitoringConfig,
    ThumbnailConfig,
    UnfoldConfig,
)
from discovery.database import init_db, make_engine


def make_image(path: Path, size=(32, 24), color="red") -> Path:
    """Write a small real image; the format follows the suffix."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path)
    return path


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the module engine at a temp database."""
    db_file = tmp_path / "unfold.db"
    monkeypatch.setattr("discovery.database.DB_PATH", db_file, raising=True)

    engine = make_engine(f"sqlite:///{db_file}")
    monkeypatch.setattr("discovery.database.engine", engine, raising=True)

    init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def config(tmp_path, library):
    return UnfoldConfig(
        library=LibraryConfig(path=library),
        thumbnails=ThumbnailConfig(width=40, height=40, directory=tmp_path / "thumbnails"),
        monitoring=MonitoringConfig(enabled=False, debounce_seconds=0.2, max_errors=3),
        feed=FeedConfig(page_size=20, max_page_size=50),
    )


@pytest.fixture
def sample_library(library):
    """The three-file library: A/1.jpg, A/2.jpg, B/1.jpg."""
    make_image(library / "A" / "1.jpg")
    make_image(library / "A" / "2.jpg", color="green")
    make_image(library / "B" / "1.jpg", color="blue")
    return library
