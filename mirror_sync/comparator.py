"""
Copy verification for Mirror Watcher.

Decides whether a source file and its mirrored copy are "the same",
either by streaming both through a ``hashlib`` digest or by comparing
their sizes.  A comparison is a two-sided join: each side is measured
independently, in any order, and the result is available once both
sides have resolved.

A side that cannot be read (still locked, share briefly unavailable) is
retried rather than reported as a mismatch.  A side that no longer
exists ends the comparison with ``FileNotFoundError``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from mirror_sync.config import VERIFY_HASH, VERIFY_SIZE
from mirror_sync.retry import RetryPolicy

logger = logging.getLogger(__name__)

_HASH_CHUNK = 256 * 1024  # 256 KiB read chunks for hashing


def file_digest(filepath: Path, algorithm: str = "sha256") -> str:
    """Return the hex digest of *filepath* using *algorithm*."""
    h = hashlib.new(algorithm)
    with open(filepath, "rb") as fh:
        while chunk := fh.read(_HASH_CHUNK):
            h.update(chunk)
    return h.hexdigest()


def file_size(filepath: Path) -> int:
    """Return the size of *filepath* in bytes."""
    return os.stat(filepath).st_size


def _side_retryable(exc: BaseException) -> bool:
    # A vanished file will not come back by waiting
    return isinstance(exc, OSError) and not isinstance(exc, FileNotFoundError)


class Comparison:
    """
    One pending comparison between two files.

    ``side_a`` and ``side_b`` may be called in either order; each returns
    the comparison so calls can be chained.  ``on_done`` fires exactly
    once with the boolean result, and the comparison itself can be awaited.
    """

    def __init__(
        self,
        measure: Callable[[Path], Any],
        retry: RetryPolicy,
        on_done: Callable[[bool], None] | None = None,
    ):
        self._measure = measure
        self._retry = retry
        self._on_done = on_done
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[bool] = self._loop.create_future()
        self._values: dict[str, Any] = {}
        self._tasks: set[asyncio.Task] = set()

    def side_a(self, path: Path) -> "Comparison":
        """Start measuring the first file."""
        self._start("a", Path(path))
        return self

    def side_b(self, path: Path) -> "Comparison":
        """Start measuring the second file."""
        self._start("b", Path(path))
        return self

    @property
    def done(self) -> bool:
        return self._future.done()

    def __await__(self):
        return self._future.__await__()

    def cancel(self) -> None:
        """Abandon both sides."""
        for task in list(self._tasks):
            task.cancel()
        if not self._future.done():
            self._future.cancel()

    # ---- internals ----

    def _start(self, side: str, path: Path) -> None:
        task = self._loop.create_task(self._resolve(side, path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, side: str, path: Path) -> None:
        try:
            value = await self._retry.run(
                lambda: asyncio.to_thread(self._measure, path),
                _side_retryable,
                f"verifying {path}",
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._future.done():
                self._future.set_exception(exc)
                if self._on_done is not None:
                    # Callback-only comparisons are never awaited
                    self._future.exception()
                    logger.warning("Comparison of %s abandoned: %s", path, exc)
            current = asyncio.current_task()
            for task in list(self._tasks):
                if task is not current:
                    task.cancel()
            return

        self._values[side] = value
        if len(self._values) == 2 and not self._future.done():
            same = self._values["a"] == self._values["b"]
            self._future.set_result(same)
            if self._on_done:
                try:
                    self._on_done(same)
                except Exception:
                    logger.exception("Error in comparison on_done callback")


class Comparator:
    """
    Factory for comparisons under one verification policy.

    Parameters
    ----------
    policy : str
        ``'hash'`` compares content digests, ``'size'`` compares byte
        lengths only.  Size-only cannot see a same-length rewrite.
    retry : RetryPolicy
        Policy used when a side cannot be read yet.
    algorithm : str
        ``hashlib`` algorithm name for the hash policy.
    """

    def __init__(
        self,
        policy: str = VERIFY_HASH,
        retry: RetryPolicy | None = None,
        algorithm: str = "sha256",
    ):
        if policy not in (VERIFY_HASH, VERIFY_SIZE):
            raise ValueError(f"Unknown verification policy: {policy!r}")
        hashlib.new(algorithm)  # fail early on a bad algorithm name
        self.policy = policy
        self.algorithm = algorithm
        self._retry = retry or RetryPolicy()

    def _measure(self, path: Path) -> Any:
        if self.policy == VERIFY_SIZE:
            return file_size(path)
        return file_digest(path, self.algorithm)

    def comparison(self, on_done: Callable[[bool], None] | None = None) -> Comparison:
        """Return a new two-sided comparison (must be called inside the event loop)."""
        return Comparison(self._measure, self._retry, on_done)

    async def compare(self, a: Path, b: Path) -> bool:
        """Return True if *a* and *b* match under the configured policy."""
        return await self.comparison().side_a(a).side_b(b)
