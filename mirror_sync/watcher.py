"""File system watcher for Mirror Watcher.

Uses the watchdog library to keep one non-recursive watch per managed
folder.  Notifications arrive on the observer thread and are handed to
the asyncio event loop, where they are debounced and classified: new
folders are watched and listed, files are passed on for transfer.

Folders whose transferred contents have all been removed are pruned
bottom-up: the folder's watch is closed, the folder is deleted, and the
parent is re-checked as long as it is itself being watched.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import Callable, Coroutine, Iterable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from mirror_sync.debounce import EventDebouncer

logger = logging.getLogger(__name__)


class _NotificationHandler(FileSystemEventHandler):
    """Watchdog handler that forwards created/changed paths to the event loop."""

    def __init__(self, manager: "WatchManager"):
        super().__init__()
        self._manager = manager

    def _forward(self, path: str | bytes) -> None:
        loop = self._manager.loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._manager.notify, Path(os.fsdecode(path)))
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug("Dropped notification for %s after shutdown", path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        # A folder "modified" event only echoes a change to one of its entries
        if event.is_directory:
            return
        self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(event.dest_path)


class WatchManager:
    """
    Creates, tracks and closes the per-folder watches under a source root.

    Parameters
    ----------
    root : Path
        The mirrored source root.  It is watched for the lifetime of the
        manager and is never pruned.
    debouncer : EventDebouncer
        Filters repeated notifications for the same path.
    observer : watchdog observer, optional
        Defaults to the platform ``Observer``.
    trash_names : iterable of str
        Filenames deleted when deciding whether a folder is empty.
    ignored_dirs : iterable of str
        Folder names never watched or listed.
    scan_delay : float
        Seconds to wait before listing a newly discovered folder, so a
        subtree that is still being copied in can settle.
    purge_delay : float
        Seconds to wait before re-checking a parent folder after pruning.
    """

    def __init__(
        self,
        root: Path,
        debouncer: EventDebouncer,
        observer: Any | None = None,
        trash_names: Iterable[str] = (),
        ignored_dirs: Iterable[str] = (),
        scan_delay: float = 0.0,
        purge_delay: float = 0.0,
    ):
        self.root = Path(root)
        self.on_file: Callable[[Path], None] | None = None
        self._debouncer = debouncer
        self._observer = observer if observer is not None else Observer()
        self._handler = _NotificationHandler(self)
        self._trash_names = frozenset(trash_names)
        self._ignored_dirs = frozenset(ignored_dirs)
        self._scan_delay = scan_delay
        self._purge_delay = purge_delay
        self._watches: dict[Path, Any] = {}
        self._tasks: set[asyncio.Task] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self.loop: asyncio.AbstractEventLoop | None = None

    # ---- lifecycle ----

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the observer, watch the root and list its existing contents."""
        if not self.root.is_dir():
            logger.error("Source folder does not exist: %s", self.root)
            raise FileNotFoundError(f"Source folder does not exist: {self.root}")

        self.loop = loop
        self._observer.start()
        if self.watch(self.root) is None:
            raise FileNotFoundError(f"Could not watch source folder: {self.root}")
        self._spawn(self.scan(self.root))
        logger.info("Watching '%s'", self.root)

    def stop(self) -> None:
        """Close every watch and stop the observer."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        for directory in list(self._watches):
            self.unwatch(directory)
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=5)
        self.loop = None
        logger.info("Watcher stopped.")

    async def idle(self) -> None:
        """Wait until no scan, classification or purge is running or scheduled."""
        while self._tasks or self._timers:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0.01)

    # ---- watch table ----

    def watch(self, directory: Path) -> Any | None:
        """Begin monitoring *directory*; return its handle, or None if it vanished."""
        directory = Path(directory)
        existing = self._watches.get(directory)
        if existing is not None:
            return existing
        try:
            handle = self._observer.schedule(self._handler, str(directory), recursive=False)
        except OSError as exc:
            logger.warning("Could not watch %s: %s", directory, exc)
            return None
        self._watches[directory] = handle
        logger.info("Watching %s", directory)
        return handle

    def unwatch(self, directory: Path) -> None:
        """Close and forget the watch on *directory* (no-op if not watched)."""
        handle = self._watches.pop(Path(directory), None)
        if handle is None:
            return
        try:
            self._observer.unschedule(handle)
        except (KeyError, OSError) as exc:
            logger.debug("Watch on %s already closed: %s", directory, exc)
        logger.info("Stopped watching %s", directory)

    def is_watched(self, directory: Path) -> bool:
        return Path(directory) in self._watches

    @property
    def watched(self) -> list[Path]:
        return sorted(self._watches)

    # ---- notifications ----

    def notify(self, path: Path) -> None:
        """Entry point for a raw notification (or a listed entry) about *path*."""
        path = Path(path)
        if path in self._watches:
            # Change to a watched folder itself, not to a new entry in it
            return
        if not self._debouncer.should_handle(str(path)):
            logger.debug("Suppressed repeat event for %s", path)
            return
        self._spawn(self.handle_path(path))

    def forget(self, path: Path) -> None:
        """Let the next notification for a removed *path* through at once."""
        self._debouncer.forget(str(Path(path)))

    async def handle_path(self, path: Path) -> None:
        """Classify *path* as folder or file and route it accordingly."""
        try:
            st = await asyncio.to_thread(os.stat, path)
        except OSError as exc:
            # Usually deleted or renamed between notification and handling
            logger.info("Dropping %s: %s", path, exc)
            return

        if stat.S_ISDIR(st.st_mode):
            if path.name in self._ignored_dirs:
                logger.info("Ignoring folder %s", path)
                return
            self.discover(path)
        elif self.on_file is not None:
            try:
                self.on_file(path)
            except Exception:
                logger.exception("Error handing off %s for transfer", path)

    def discover(self, directory: Path, delay: float | None = None) -> None:
        """Watch a newly found folder and list it once it has had time to settle."""
        if self.watch(directory) is None:
            return
        self._spawn_later(self._scan_delay if delay is None else delay, self.scan, directory)

    async def scan(self, directory: Path) -> None:
        """List *directory* and feed each existing entry through ``notify``."""
        try:
            names = await asyncio.to_thread(os.listdir, directory)
        except OSError as exc:
            logger.warning("Could not list %s: %s", directory, exc)
            return
        for name in sorted(names):
            if name in self._ignored_dirs:
                logger.debug("Skipping ignored entry %s", Path(directory) / name)
                continue
            self.notify(Path(directory) / name)

    # ---- pruning ----

    def schedule_purge(self, directory: Path, delay: float | None = None) -> None:
        """Run ``attempt_purge(directory)`` after *delay* (default: purge delay)."""
        self._spawn_later(
            self._purge_delay if delay is None else delay,
            self.attempt_purge,
            Path(directory),
        )

    async def attempt_purge(self, directory: Path) -> bool:
        """
        Remove *directory* if nothing but trash is left in it.

        Returns True when the folder was removed.  On removal the watch is
        closed and the parent is re-checked after the purge delay, but only
        while the parent is itself watched.  The source root is never removed.
        """
        directory = Path(directory)
        if directory == self.root or self.root not in directory.parents:
            return False

        try:
            names = await asyncio.to_thread(os.listdir, directory)
        except OSError as exc:
            logger.info("Not pruning %s: %s", directory, exc)
            return False

        remaining = []
        for name in names:
            if name not in self._trash_names:
                remaining.append(name)
                continue
            try:
                await asyncio.to_thread(os.remove, directory / name)
                logger.info("Deleted trash file %s", directory / name)
            except OSError as exc:
                logger.warning("Could not delete %s: %s", directory / name, exc)
                return False

        if remaining:
            logger.debug("Not pruning %s: %d entries left", directory, len(remaining))
            return False

        # Close the watch first; some platforms refuse to remove a watched folder
        self.unwatch(directory)
        try:
            await asyncio.to_thread(os.rmdir, directory)
        except OSError as exc:
            logger.warning("Could not remove folder %s: %s", directory, exc)
            if directory.is_dir():
                # Entries created while the watch was closed raised no event
                self.discover(directory)
            return False
        logger.info("Removed empty folder %s", directory)
        self.forget(directory)

        parent = directory.parent
        if self.is_watched(parent):
            self.schedule_purge(parent)
        return True

    # ---- task bookkeeping ----

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
        if self.loop is None:
            coro.close()
            return None
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Watcher task failed", exc_info=task.exception())

    def _spawn_later(
        self,
        delay: float,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
    ) -> None:
        if self.loop is None:
            return

        def fire() -> None:
            self._timers.discard(timer)
            self._spawn(func(*args))

        timer = self.loop.call_later(delay, fire)
        self._timers.add(timer)
