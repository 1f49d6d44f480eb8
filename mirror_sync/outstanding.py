"""Tracking of transfers that have started but not yet been verified and deleted."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class OutstandingTracker:
    """Set of in-flight source paths, with the time each transfer started."""

    def __init__(self) -> None:
        self._started: dict[Path, float] = {}

    def add(self, path: Path) -> None:
        self._started.setdefault(Path(path), time.time())

    def discard(self, path: Path) -> None:
        self._started.pop(Path(path), None)

    def __contains__(self, path: object) -> bool:
        try:
            return Path(path) in self._started  # type: ignore[arg-type]
        except TypeError:
            return False

    def __len__(self) -> int:
        return len(self._started)

    def __iter__(self) -> Iterator[Path]:
        return iter(list(self._started))

    def snapshot(self) -> list[Path]:
        """Return the outstanding paths, sorted."""
        return sorted(self._started)

    def report(self) -> str:
        """Return a human-readable listing for the operator."""
        if not self._started:
            return "No outstanding transfers."
        lines = [f"{len(self._started)} outstanding transfer(s):"]
        for path in self.snapshot():
            since = datetime.fromtimestamp(self._started[path]).strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"  {path}  (since {since})")
        return "\n".join(lines)


class OutstandingCountFilter(logging.Filter):
    """Adds ``record.outstanding`` so every log line shows the in-flight count."""

    def __init__(self, tracker: OutstandingTracker):
        super().__init__()
        self._tracker = tracker

    def filter(self, record: logging.LogRecord) -> bool:
        record.outstanding = len(self._tracker)
        return True
