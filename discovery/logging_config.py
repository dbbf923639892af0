"""Logging for Unfold.

One rotating log file in DATA_DIR catches everything at DEBUG; the console
gets a Rich handler at the requested level. Library modules only call
`get_logger(__name__)`; entry points (CLI commands, `serve`) call
`setup_logging()` once.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from .config import DATA_DIR

LOG_FILE_NAME = "unfold.log"
LOG_LEVEL_ENV = "UNFOLD_LOG_LEVEL"

# Raised to WARNING
QUIET_LOGGERS = ("watchdog", "uvicorn.access", "PIL")

_log_file: Optional[Path] = None


def _file_handler(path: Path) -> logging.Handler:
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def _console_handler(level: int) -> logging.Handler:
    console = Console(theme=Theme({"logging.level.info": "bold cyan"}))
    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setLevel(level)
    return handler


def setup_logging(log_level: Optional[str] = None, log_dir: Optional[Path] = None) -> Path:
    """Install the file and console handlers on the root logger.

    Safe to call repeatedly; only the first call configures anything.

    Args:
        log_level: Console level name. Falls back to $UNFOLD_LOG_LEVEL, then INFO.
        log_dir: Directory for the log file. Defaults to DATA_DIR.

    Returns:
        Path of the log file in use.
    """
    global _log_file

    if _log_file is not None:
        return _log_file

    level_name = (log_level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    log_dir = Path(log_dir or DATA_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(_file_handler(log_file))
    root_logger.addHandler(_console_handler(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Alembic logs through the root handlers
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _log_file = log_file
    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
