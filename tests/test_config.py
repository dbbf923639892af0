"""Tests for config.ini parsing."""

from pathlib import Path

import pytest

from discovery import config as config_module
from discovery.config import DEFAULT_IMAGE_EXTENSIONS, get_config, load_config, reset_config_cache


def _write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def test_defaults_fill_missing_sections(tmp_path):
    cfg = load_config(_write(tmp_path / "config.ini", "[library]\npath = ~/media\n"))

    assert cfg.library_path == Path("~/media").expanduser()
    assert cfg.library.default_user == "local"
    assert cfg.scanner.image_extensions == DEFAULT_IMAGE_EXTENSIONS
    assert cfg.thumbnails.format == "webp"
    assert cfg.monitoring.enabled is True
    assert cfg.feed.page_size == 20
    assert cfg.integrity.interval_minutes == 0


def test_sections_are_parsed(tmp_path):
    ini = _write(
        tmp_path / "config.ini",
        "[library]\n"
        "path = /srv/media\n"
        "default_user = alice\n"
        "[scanner]\n"
        "image_extensions = JPG, .png\n"
        "ignore_patterns = @eaDir, Thumbs.db\n"
        "[monitoring]\n"
        "enabled = no\n"
        "debounce_seconds = 0.5\n"
        "[thumbnails]\n"
        "format = JPEG\n"
        "directory = /tmp/thumbs\n"
        "[feed]\n"
        "max_page_size = 10\n",
    )

    cfg = load_config(ini)

    assert cfg.library.default_user == "alice"
    assert cfg.scanner.image_extensions == (".jpg", ".png")
    assert cfg.scanner.ignore_patterns == ("@eaDir", "Thumbs.db")
    assert cfg.monitoring.enabled is False
    assert cfg.monitoring.debounce_seconds == 0.5
    assert cfg.thumbnails.format == "jpeg"
    assert cfg.thumbnails_dir == Path("/tmp/thumbs")
    assert cfg.feed.max_page_size == 10


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.ini")


def test_get_config_is_cached(tmp_path, monkeypatch):
    ini = _write(tmp_path / "config.ini", "[library]\npath = /srv/a\n")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", ini)
    reset_config_cache()
    try:
        first = get_config()
        _write(ini, "[library]\npath = /srv/b\n")
        assert get_config() is first

        reset_config_cache()
        assert get_config().library_path == Path("/srv/b")
    finally:
        reset_config_cache()
