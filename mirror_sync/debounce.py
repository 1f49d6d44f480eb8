"""Duplicate-event suppression for Mirror Watcher.

Filesystem notifications are unreliable: one write can fire several
created/modified events, and an echo cannot be told apart from a new
write.  The debouncer lets the first event for a path through, drops
repeats until the entry ages past the timeout, and periodically sweeps
old entries so the history does not grow without bound.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventDebouncer:
    """Remembers when each path was first seen inside the suppression window."""

    def __init__(
        self,
        timeout: float,
        sweep_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timeout = timeout
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._history: dict[str, float] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def __len__(self) -> int:
        return len(self._history)

    def __contains__(self, path: object) -> bool:
        return str(path) in self._history

    def should_handle(self, path: str) -> bool:
        """Return True the first time *path* is seen within the window."""
        key = str(path)
        now = self._clock()
        first_seen = self._history.get(key)
        # An entry older than the timeout must not suppress, swept or not
        if first_seen is not None and now - first_seen < self._timeout:
            return False
        self._history[key] = now
        return True

    def forget(self, path: str) -> None:
        """Drop any history for *path* so its next event is handled."""
        self._history.pop(str(path), None)

    def sweep(self) -> int:
        """Evict entries older than the timeout; return how many were removed."""
        now = self._clock()
        stale = [k for k, ts in self._history.items() if now - ts >= self._timeout]
        for key in stale:
            del self._history[key]
        if stale:
            logger.debug("Evicted %d stale event(s) from history", len(stale))
        return len(stale)

    # ---- lifecycle ----

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Begin sweeping on *loop* every ``sweep_interval`` seconds."""
        self._loop = loop
        self._schedule()

    def stop(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._loop = None

    def _schedule(self) -> None:
        if self._loop is not None:
            self._timer = self._loop.call_later(self._sweep_interval, self._tick)

    def _tick(self) -> None:
        self.sweep()
        self._schedule()
