"""Tests for logging setup."""

import logging

import pytest

from discovery import logging_config


@pytest.fixture
def clean_root(monkeypatch):
    monkeypatch.setattr(logging_config, "_log_file", None)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_log_file_in_requested_dir(tmp_path, clean_root):
    log_file = logging_config.setup_logging("DEBUG", log_dir=tmp_path)

    logging_config.get_logger("discovery.scanner").info("[INDEX] /media")
    for handler in clean_root.handlers:
        handler.flush()

    assert log_file == tmp_path / logging_config.LOG_FILE_NAME
    assert "[INDEX] /media" in log_file.read_text()


def test_setup_is_idempotent(tmp_path, clean_root):
    first = logging_config.setup_logging(log_dir=tmp_path)
    count = len(clean_root.handlers)

    assert logging_config.setup_logging(log_dir=tmp_path / "other") == first
    assert len(clean_root.handlers) == count


def test_console_level_from_environment(tmp_path, clean_root, monkeypatch):
    monkeypatch.setenv(logging_config.LOG_LEVEL_ENV, "warning")

    logging_config.setup_logging(log_dir=tmp_path)

    console = [h for h in clean_root.handlers if h.__class__.__name__ == "RichHandler"][-1]
    assert console.level == logging.WARNING
    assert logging.getLogger("watchdog").level == logging.WARNING
