"""Shared fixtures for the Mirror Watcher test suite."""

import asyncio
import errno
import os
import time
from types import SimpleNamespace

import pytest

from mirror_sync.config import Config


class FakeObserver:
    """In-process stand-in for a watchdog observer; records scheduled watches."""

    def __init__(self):
        self.scheduled = {}
        self.fail_paths = set()
        self.handler = None
        self._alive = False

    def start(self):
        self._alive = True

    def stop(self):
        self._alive = False

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self._alive

    def schedule(self, handler, path, recursive=False):
        if path in self.fail_paths or not os.path.isdir(path):
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        self.handler = handler
        watch = SimpleNamespace(path=path, is_recursive=recursive)
        self.scheduled[path] = watch
        return watch

    def unschedule(self, watch):
        if self.scheduled.get(watch.path) is not watch:
            raise KeyError(watch)
        del self.scheduled[watch.path]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def _wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_observer():
    return FakeObserver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def roots(tmp_path):
    """Create and return (source_root, destination_root)."""
    source = tmp_path / "src"
    destination = tmp_path / "dst"
    source.mkdir()
    return source, destination


@pytest.fixture
def fast_config(tmp_path):
    """Config with every delay shortened so tests settle quickly."""
    cfg = Config(tmp_path / "config.json")
    cfg.retry_delay = 0.01
    cfg.settle_delay = 0.01
    cfg.scan_delay = 0
    cfg.purge_delay = 0
    cfg.debounce_timeout = 30
    cfg.debounce_sweep = 1
    cfg.log_to_file = False
    return cfg
