"""Filesystem monitoring for Unfold.

Uses Watchdog to detect added/removed media in real-time and apply them to
the index one file at a time. Structural changes (folders appearing or
disappearing directly below the root) are debounced into a single source
regeneration pass.
"""

from __future__ import annotations

import os
import queue
import threading
import time
from enum import Enum
from pathlib import Path
from threading import Event, Thread
from typing import Callable, NamedTuple, Optional, TYPE_CHECKING

from sqlmodel import Session
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .classifier import MediaClassifier
from .config import UnfoldConfig
from .database import get_engine
from .exceptions import LibraryNotFoundError, WatcherError
from .logging_config import get_logger
from .path_utils import is_source_boundary, is_utf8, normalize
from .repository import Repository
from .scanner import add_media_file, remove_media_path, sync_sources, walk_library

if TYPE_CHECKING:
    from .thumbnails import ThumbnailCache

logger = get_logger(__name__)


class WatcherState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class DebounceState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FIRING = "firing"


class Debouncer:
    """Coalesce bursts of triggers into one callback after a quiet period.

    idle -> pending(deadline) -> firing -> idle. Every trigger pushes the
    deadline out again; a trigger while firing re-arms to pending so the
    change is picked up by one more run. Nothing fires on its own: the owner
    calls poll() regularly, which keeps tests on a simulated clock.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay = delay
        self.callback = callback
        self.clock = clock
        self.state = DebounceState.IDLE
        self.deadline: Optional[float] = None
        self._lock = threading.Lock()

    def trigger(self) -> None:
        with self._lock:
            self.deadline = self.clock() + self.delay
            self.state = DebounceState.PENDING

    def cancel(self) -> None:
        with self._lock:
            if self.state == DebounceState.PENDING:
                self.state = DebounceState.IDLE
                self.deadline = None

    def poll(self) -> bool:
        """Run the callback if the deadline has passed. Returns True if it ran."""
        with self._lock:
            if self.state != DebounceState.PENDING or self.clock() < self.deadline:
                return False
            self.state = DebounceState.FIRING
            self.deadline = None

        try:
            self.callback()
        finally:
            with self._lock:
                if self.state == DebounceState.FIRING:
                    self.state = DebounceState.IDLE
        return True


class MonitorTask(NamedTuple):
    action: str  # "add" | "remove" | "scan"
    path: Path


class WatcherStatus(NamedTuple):
    state: WatcherState
    root: Optional[Path]
    user_id: Optional[str]
    processed: int
    last_error: Optional[str]


class MediaLibraryHandler(FileSystemEventHandler):
    """Handle filesystem events and push them to a processing queue."""

    def __init__(
        self,
        root: Path,
        classifier: MediaClassifier,
        task_queue: queue.Queue,
        debouncer: Debouncer,
    ):
        super().__init__()
        self.root = root
        self.classifier = classifier
        self.task_queue = task_queue
        self.debouncer = debouncer

    def _path(self, raw) -> Optional[Path]:
        path = Path(os.path.abspath(os.fsdecode(raw)))
        if not is_utf8(path):
            logger.debug(f"Ignoring event for {os.fsencode(path)!r}: name is not valid UTF-8")
            return None
        try:
            path.relative_to(self.root)
        except ValueError:
            return None
        if path == self.root or self.classifier.is_hidden_path(path, self.root):
            return None
        return path

    def _structural(self, path: Path) -> None:
        if is_source_boundary(path, self.root):
            self.debouncer.trigger()

    def on_created(self, event: FileSystemEvent) -> None:
        path = self._path(event.src_path)
        if path is None:
            return

        if event.is_directory:
            self._structural(path)
            # Folders moved in from outside the tree arrive with their content
            self.task_queue.put(MonitorTask("scan", path))
        elif self.classifier.classify(path.name):
            self.task_queue.put(MonitorTask("add", path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = self._path(event.src_path)
        if path is None:
            return

        if event.is_directory:
            self._structural(path)
        self.task_queue.put(MonitorTask("remove", path))

    def on_moved(self, event: FileSystemEvent) -> None:
        src_path = self._path(event.src_path)
        dest_path = self._path(event.dest_path)

        if src_path is not None:
            if event.is_directory:
                self._structural(src_path)
            self.task_queue.put(MonitorTask("remove", src_path))

        if dest_path is not None:
            if event.is_directory:
                self._structural(dest_path)
                self.task_queue.put(MonitorTask("scan", dest_path))
            elif self.classifier.classify(dest_path.name):
                self.task_queue.put(MonitorTask("add", dest_path))


class LibraryWatcher:
    """Owned handle over at most one running watcher.

    start() on a running handle stops the current watcher first. A dead
    OS subscription or max_errors consecutive processing failures move the
    handle to stopped and keep the cause in last_error.
    """

    def __init__(
        self,
        config: UnfoldConfig,
        thumbnails: Optional["ThumbnailCache"] = None,
        observer_factory: Callable[[], Observer] = Observer,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.25,
    ):
        self.config = config
        self.classifier = MediaClassifier.from_config(config)
        self.thumbnails = thumbnails
        self.poll_interval = poll_interval
        self._observer_factory = observer_factory
        self._clock = clock

        self.state = WatcherState.STOPPED
        self.root: Optional[Path] = None
        self.user_id: Optional[str] = None
        self.processed = 0
        self.last_error: Optional[WatcherError] = None

        self._observer = None
        self._worker: Optional[Thread] = None
        self._stop_event: Optional[Event] = None
        self._debouncer: Optional[Debouncer] = None
        self._control_lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self.state == WatcherState.RUNNING

    def status(self) -> WatcherStatus:
        with self._state_lock:
            return WatcherStatus(
                state=self.state,
                root=self.root,
                user_id=self.user_id,
                processed=self.processed,
                last_error=str(self.last_error) if self.last_error else None,
            )

    def raise_if_failed(self) -> None:
        """Re-raise the fatal error that stopped the watcher, if any."""
        if self.state == WatcherState.STOPPED and self.last_error is not None:
            raise self.last_error

    def start(self, root: Path, user_id: Optional[str] = None) -> None:
        root = normalize(root)
        if not root.is_dir():
            raise LibraryNotFoundError(f"Library path does not exist: {root}")

        with self._control_lock:
            self._shutdown()

            task_queue: queue.Queue = queue.Queue()
            stop_event = Event()
            debouncer = Debouncer(
                self.config.monitoring.debounce_seconds,
                lambda: self._regenerate_sources(root, user_id),
                clock=self._clock,
            )
            handler = MediaLibraryHandler(root, self.classifier, task_queue, debouncer)

            observer = self._observer_factory()
            try:
                observer.schedule(handler, str(root), recursive=True)
                observer.start()
            except OSError as exc:
                error = WatcherError(f"Unable to watch {root}: {exc}")
                with self._state_lock:
                    self.last_error = error
                logger.error(f"[WATCH] {error}")
                raise error from exc

            worker = Thread(
                target=self._run,
                args=(observer, task_queue, debouncer, stop_event, root, user_id),
                daemon=True,
                name="UnfoldWatcherWorker",
            )
            with self._state_lock:
                self._observer = observer
                self._worker = worker
                self._stop_event = stop_event
                self._debouncer = debouncer
                self.root = root
                self.user_id = user_id
                self.processed = 0
                self.last_error = None
                self.state = WatcherState.RUNNING
            worker.start()

        logger.info(f"[WATCH] Watching {root}")

    def stop(self) -> None:
        with self._control_lock:
            self._shutdown()

    def _shutdown(self) -> None:
        with self._state_lock:
            observer, worker = self._observer, self._worker
            stop_event, debouncer = self._stop_event, self._debouncer
            self._observer = self._worker = self._stop_event = self._debouncer = None
            was_running = self.state == WatcherState.RUNNING
            self.state = WatcherState.STOPPED

        if stop_event is not None:
            stop_event.set()
        if debouncer is not None:
            debouncer.cancel()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=5)
        if was_running:
            logger.info(f"[WATCH] Stopped watching {self.root}")

    def _fail(self, stop_event: Event, error: WatcherError) -> None:
        with self._state_lock:
            if self._stop_event is not stop_event:
                return
            observer = self._observer
            self._observer = self._worker = self._stop_event = self._debouncer = None
            self.last_error = error
            self.state = WatcherState.STOPPED

        stop_event.set()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        logger.error(f"[WATCH] Watcher stopped: {error}")

    @staticmethod
    def _subscription_alive(observer) -> bool:
        return observer.is_alive() and all(e.is_alive() for e in observer.emitters)

    def _process(self, task: MonitorTask, root: Path, user_id: Optional[str]) -> None:
        if task.action == "add":
            add_media_file(task.path, root, self.classifier, user_id)
        elif task.action == "remove":
            remove_media_path(task.path, self.thumbnails)
        elif task.action == "scan":
            if task.path.is_dir():
                for path, _ in walk_library(task.path, self.classifier):
                    add_media_file(path, root, self.classifier, user_id)
        with self._state_lock:
            self.processed += 1

    def _regenerate_sources(self, root: Path, user_id: Optional[str]) -> None:
        with Session(get_engine()) as session:
            repo = Repository(session)
            sync = sync_sources(repo, root, self.classifier, user_id)
            repo.commit()

        if self.thumbnails and sync.removed_media_ids:
            self.thumbnails.remove(sync.removed_media_ids)
        logger.info(f"[~] Sources regenerated: {sync.created} new, {sync.removed} removed")

    def _run(
        self,
        observer,
        task_queue: queue.Queue,
        debouncer: Debouncer,
        stop_event: Event,
        root: Path,
        user_id: Optional[str],
    ) -> None:
        """Worker loop: apply events as they arrive and poll the debouncer."""
        max_errors = max(1, self.config.monitoring.max_errors)
        consecutive_errors = 0

        while not stop_event.is_set():
            try:
                task = task_queue.get(timeout=self.poll_interval)
            except queue.Empty:
                task = None

            try:
                if task is not None:
                    self._process(task, root, user_id)
                fired = debouncer.poll()
                if task is not None or fired:
                    consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(f"Error processing {task or 'source regeneration'}: {exc}")
                if consecutive_errors >= max_errors:
                    self._fail(
                        stop_event,
                        WatcherError(f"{consecutive_errors} consecutive failures, last: {exc}"),
                    )
                    return
            finally:
                if task is not None:
                    task_queue.task_done()

            if not stop_event.is_set() and not self._subscription_alive(observer):
                self._fail(stop_event, WatcherError("Filesystem subscription ended unexpectedly"))
                return
