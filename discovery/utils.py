"""Utility functions for Unfold."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .exceptions import OperationInProgressError


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/folder/file.jpg -> folder/file.jpg
    """
    return f"{path.parent.name}/{path.name}"


class RunGuard:
    """Non-reentrant run flag: a second run while one is active is rejected, not queued."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise OperationInProgressError(f"{self.name} already in progress")
        try:
            yield
        finally:
            self._lock.release()
