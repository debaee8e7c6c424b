"""Shared fixtures for the library watcher tests."""

import tempfile
import time
from pathlib import Path

import pytest


class FakeObserver:
    """Stands in for a watchdog observer and records scheduled watches."""

    def __init__(self, fail_on=()):
        self.watches = {}
        self.started = False
        self.stopped = False
        self.fail_on = {str(p) for p in fail_on}

    def schedule(self, handler, path, recursive=False):
        if path in self.fail_on:
            raise OSError(28, "inotify watch limit reached", path)
        watch = ("watch", path, recursive)
        self.watches[path] = watch
        return watch

    def unschedule(self, watch):
        self.watches.pop(watch[1])

    def unschedule_all(self):
        self.watches.clear()

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


@pytest.fixture
def fake_observer():
    return FakeObserver()


@pytest.fixture
def library_root():
    """A library root holding two folders and one file."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp) / "library"
        (root / "A").mkdir(parents=True)
        (root / "B").mkdir()
        (root / "F.epub").write_bytes(b"epub")
        yield root


def wait_until(predicate, timeout=5.0, interval=0.01):
    """Poll predicate until it is true or timeout seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
