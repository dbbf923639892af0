"""Tests for filesystem monitoring."""

import queue
import shutil
import time
from pathlib import Path
from unittest.mock import Mock

import pytest
from sqlmodel import Session, select
from watchdog.observers.polling import PollingObserver

from conftest import make_image
from discovery import scanner
from discovery.database import get_engine
from discovery.exceptions import LibraryNotFoundError, WatcherError
from discovery.models import Media, Source
from discovery.monitor import (
    DebounceState,
    Debouncer,
    LibraryWatcher,
    MediaLibraryHandler,
    MonitorTask,
    WatcherState,
)
from discovery.classifier import MediaClassifier


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _wait_until(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def _stored_paths():
    with Session(get_engine()) as session:
        return {m.path for m in session.exec(select(Media)).all()}


def _source_paths():
    with Session(get_engine()) as session:
        return {s.folder_path for s in session.exec(select(Source)).all()}


def _event(src_path, is_directory=False, dest_path=None):
    event = Mock()
    event.src_path = str(src_path)
    event.is_directory = is_directory
    event.dest_path = str(dest_path) if dest_path else ""
    return event


# --- Debouncer ---


def test_debouncer_fires_once_after_quiet_period():
    clock = FakeClock()
    callback = Mock()
    debouncer = Debouncer(3.0, callback, clock=clock)

    debouncer.trigger()
    assert debouncer.state == DebounceState.PENDING
    clock.now = 2.9
    assert not debouncer.poll()

    clock.now = 3.0
    assert debouncer.poll()
    assert callback.call_count == 1
    assert debouncer.state == DebounceState.IDLE

    clock.now = 10.0
    assert not debouncer.poll()
    assert callback.call_count == 1


def test_debouncer_resets_deadline_on_every_trigger():
    clock = FakeClock()
    callback = Mock()
    debouncer = Debouncer(3.0, callback, clock=clock)

    debouncer.trigger()
    clock.now = 2.0
    debouncer.trigger()
    clock.now = 4.0
    assert not debouncer.poll()
    clock.now = 5.0
    assert debouncer.poll()
    assert callback.call_count == 1


def test_debouncer_cancel():
    clock = FakeClock()
    callback = Mock()
    debouncer = Debouncer(1.0, callback, clock=clock)

    debouncer.trigger()
    debouncer.cancel()
    clock.now = 5.0

    assert not debouncer.poll()
    assert debouncer.state == DebounceState.IDLE
    callback.assert_not_called()


def test_trigger_while_firing_rearms():
    clock = FakeClock()
    debouncer = Debouncer(1.0, lambda: debouncer.trigger(), clock=clock)

    debouncer.trigger()
    clock.now = 1.0
    assert debouncer.poll()

    assert debouncer.state == DebounceState.PENDING
    assert debouncer.deadline == 2.0


def test_debouncer_returns_to_idle_when_callback_fails():
    clock = FakeClock()
    debouncer = Debouncer(1.0, Mock(side_effect=RuntimeError("boom")), clock=clock)

    debouncer.trigger()
    clock.now = 1.0
    with pytest.raises(RuntimeError):
        debouncer.poll()
    assert debouncer.state == DebounceState.IDLE


# --- Event handler ---


@pytest.fixture
def handler_parts():
    root = Path("/media")
    task_queue = queue.Queue()
    debouncer = Mock()
    handler = MediaLibraryHandler(root, MediaClassifier(), task_queue, debouncer)
    return handler, task_queue, debouncer


def _drain(task_queue):
    tasks = []
    while not task_queue.empty():
        tasks.append(task_queue.get())
    return tasks


def test_handler_queues_supported_file_creation(handler_parts):
    handler, task_queue, debouncer = handler_parts

    handler.on_created(_event("/media/A/1.jpg"))
    handler.on_created(_event("/media/A/notes.txt"))

    assert _drain(task_queue) == [MonitorTask("add", Path("/media/A/1.jpg"))]
    debouncer.trigger.assert_not_called()


def test_handler_ignores_hidden_and_foreign_paths(handler_parts):
    handler, task_queue, _ = handler_parts

    handler.on_created(_event("/media/A/._1.jpg"))
    handler.on_created(_event("/media/.cache/1.jpg"))
    handler.on_created(_event("/elsewhere/A/1.jpg"))
    handler.on_deleted(_event("/media/A/.DS_Store"))

    assert task_queue.empty()


def test_handler_ignores_names_that_are_not_utf8(handler_parts):
    handler, task_queue, debouncer = handler_parts

    handler.on_created(_event("/media/A/caf\udce9.jpg"))
    handler.on_created(_event("/media/\udcff", is_directory=True))

    assert task_queue.empty()
    debouncer.trigger.assert_not_called()


def test_handler_queues_removal(handler_parts):
    handler, task_queue, debouncer = handler_parts

    handler.on_deleted(_event("/media/A/1.jpg"))

    assert _drain(task_queue) == [MonitorTask("remove", Path("/media/A/1.jpg"))]
    debouncer.trigger.assert_not_called()


def test_handler_debounces_top_level_folders_only(handler_parts):
    handler, task_queue, debouncer = handler_parts

    handler.on_created(_event("/media/A/sub", is_directory=True))
    debouncer.trigger.assert_not_called()

    handler.on_created(_event("/media/New", is_directory=True))
    handler.on_deleted(_event("/media/Old", is_directory=True))
    assert debouncer.trigger.call_count == 2

    assert _drain(task_queue) == [
        MonitorTask("scan", Path("/media/A/sub")),
        MonitorTask("scan", Path("/media/New")),
        MonitorTask("remove", Path("/media/Old")),
    ]


def test_handler_splits_moves(handler_parts):
    handler, task_queue, debouncer = handler_parts

    handler.on_moved(_event("/media/A/1.jpg", dest_path="/media/B/1.jpg"))
    handler.on_moved(_event("/media/A", is_directory=True, dest_path="/media/C"))

    assert _drain(task_queue) == [
        MonitorTask("remove", Path("/media/A/1.jpg")),
        MonitorTask("add", Path("/media/B/1.jpg")),
        MonitorTask("remove", Path("/media/A")),
        MonitorTask("scan", Path("/media/C")),
    ]
    assert debouncer.trigger.call_count == 2


def test_handler_move_to_hidden_is_a_removal(handler_parts):
    handler, task_queue, _ = handler_parts

    handler.on_moved(_event("/media/A/1.jpg", dest_path="/media/A/.1.jpg"))

    assert _drain(task_queue) == [MonitorTask("remove", Path("/media/A/1.jpg"))]


# --- Watcher ---


class FakeObserver:
    """Observer stand-in whose liveness the test controls."""

    def __init__(self):
        self.handler = None
        self.alive = True
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler

    def start(self):
        pass

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self.alive

    @property
    def emitters(self):
        return set()


@pytest.fixture
def watch_config(config):
    config.monitoring.enabled = True
    return config


def test_watcher_applies_changes_without_reindex(db, watch_config, sample_library):
    scanner.index_library(watch_config, user_id="alice")
    watcher = LibraryWatcher(
        watch_config,
        observer_factory=lambda: PollingObserver(timeout=0.1),
        poll_interval=0.05,
    )
    watcher.start(sample_library, user_id="alice")
    try:
        assert watcher.status().state == WatcherState.RUNNING

        new_file = make_image(sample_library / "A" / "3.jpg")
        assert _wait_until(lambda: str(new_file) in _stored_paths())

        (sample_library / "A" / "1.jpg").unlink()
        assert _wait_until(lambda: str(sample_library / "A" / "1.jpg") not in _stored_paths())

        make_image(sample_library / "C" / "1.jpg")
        assert _wait_until(lambda: str(sample_library / "C") in _source_paths())

        shutil.rmtree(sample_library / "B")
        assert _wait_until(lambda: str(sample_library / "B") not in _source_paths())
        assert str(sample_library / "B" / "1.jpg") not in _stored_paths()
    finally:
        watcher.stop()

    assert watcher.status().state == WatcherState.STOPPED
    assert watcher.status().last_error is None


def test_watcher_start_replaces_running_watcher(db, watch_config, library):
    observers = []

    def factory():
        observers.append(FakeObserver())
        return observers[-1]

    watcher = LibraryWatcher(watch_config, observer_factory=factory, poll_interval=0.05)
    other = library / "other"
    other.mkdir()

    watcher.start(library)
    watcher.start(other)
    try:
        assert observers[0].stopped
        assert not observers[1].stopped
        assert watcher.status().root == other
    finally:
        watcher.stop()
    assert observers[1].stopped


def test_watcher_stops_when_subscription_dies(db, watch_config, library):
    observer = FakeObserver()
    watcher = LibraryWatcher(watch_config, observer_factory=lambda: observer, poll_interval=0.05)
    watcher.start(library)

    observer.alive = False

    assert _wait_until(lambda: watcher.status().state == WatcherState.STOPPED)
    assert "subscription" in watcher.status().last_error
    with pytest.raises(WatcherError):
        watcher.raise_if_failed()


def test_watcher_stops_after_repeated_failures(db, watch_config, library, monkeypatch):
    observer = FakeObserver()
    watcher = LibraryWatcher(watch_config, observer_factory=lambda: observer, poll_interval=0.05)
    monkeypatch.setattr(watcher, "_process", Mock(side_effect=OSError("disk gone")))
    watcher.start(library)

    for i in range(watch_config.monitoring.max_errors):
        observer.handler.on_created(_event(library / "A" / f"{i}.jpg"))

    assert _wait_until(lambda: watcher.status().state == WatcherState.STOPPED)
    assert "disk gone" in watcher.status().last_error
    assert observer.stopped


def test_watcher_start_requires_existing_root(db, watch_config, tmp_path):
    watcher = LibraryWatcher(watch_config, observer_factory=FakeObserver)
    with pytest.raises(LibraryNotFoundError):
        watcher.start(tmp_path / "missing")
    assert watcher.status().state == WatcherState.STOPPED
