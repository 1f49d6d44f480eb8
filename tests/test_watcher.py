"""
Unit Tests for the Watch Manager

Tests the startup scan, classification, duplicate suppression and the
bottom-up pruning of emptied folders.  A fake observer stands in for
watchdog so every step runs on the test's event loop.
"""

import asyncio
import errno
import time
from pathlib import Path

import pytest

from mirror_sync.debounce import EventDebouncer
from mirror_sync.watcher import WatchManager, _NotificationHandler


def make_manager(root, observer, clock=None, **kwargs):
    debouncer = EventDebouncer(timeout=30, sweep_interval=10, clock=clock or time.monotonic)
    manager = WatchManager(
        root=root,
        debouncer=debouncer,
        observer=observer,
        trash_names=kwargs.pop("trash_names", [".DS_Store", "Thumbs.db"]),
        ignored_dirs=kwargs.pop("ignored_dirs", ["$RECYCLE.BIN"]),
        **kwargs,
    )
    files = []
    manager.on_file = files.append
    return manager, files


class TestStartupScan:
    """Test suite for initial population."""

    def test_existing_files_and_subfolders_are_found(self, roots, fake_observer):
        source, _ = roots
        (source / "a.txt").write_bytes(b"0123456789")
        (source / "sub").mkdir()
        (source / "sub" / "b.txt").write_bytes(b"b")
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            manager.stop()

        asyncio.run(scenario())

        assert sorted(files) == [source / "a.txt", source / "sub" / "b.txt"]

    def test_subfolders_get_their_own_watch(self, roots, fake_observer):
        source, _ = roots
        (source / "sub" / "deeper").mkdir(parents=True)
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            return manager.watched

        watched = asyncio.run(scenario())

        assert watched == [source, source / "sub", source / "sub" / "deeper"]
        assert all(not w.is_recursive for w in fake_observer.scheduled.values())

    def test_ignored_folders_are_skipped(self, roots, fake_observer):
        source, _ = roots
        (source / "$RECYCLE.BIN").mkdir()
        (source / "$RECYCLE.BIN" / "junk.txt").write_bytes(b"x")
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            return manager.watched

        watched = asyncio.run(scenario())

        assert files == []
        assert watched == [source]

    def test_missing_root_raises(self, tmp_path, fake_observer):
        manager, _ = make_manager(tmp_path / "nope", fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())

        with pytest.raises(FileNotFoundError):
            asyncio.run(scenario())


class TestNotifications:
    """Test suite for notify/classify."""

    def test_repeat_notifications_are_suppressed(self, roots, fake_observer, clock):
        source, _ = roots
        target = source / "c.txt"
        manager, files = make_manager(source, fake_observer, clock=clock)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            target.write_bytes(b"c")
            manager.notify(target)
            manager.notify(target)
            await manager.idle()
            first = list(files)
            clock.advance(31)
            manager.notify(target)
            await manager.idle()
            return first

        first = asyncio.run(scenario())

        assert first == [target]
        assert files == [target, target]

    def test_vanished_path_is_dropped(self, roots, fake_observer):
        source, _ = roots
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            manager.notify(source / "gone.txt")
            await manager.idle()

        asyncio.run(scenario())

        assert files == []

    def test_event_for_watched_folder_itself_is_ignored(self, roots, fake_observer):
        source, _ = roots
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            manager.notify(source)
            await manager.idle()

        asyncio.run(scenario())

        assert files == []

    def test_new_folder_is_watched_and_listed(self, roots, fake_observer):
        source, _ = roots
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            (source / "incoming").mkdir()
            (source / "incoming" / "x.raw").write_bytes(b"x")
            manager.notify(source / "incoming")
            await manager.idle()

        asyncio.run(scenario())

        assert manager.is_watched(source / "incoming")
        assert files == [source / "incoming" / "x.raw"]

    def test_handler_forwards_to_the_loop(self, roots, fake_observer):
        source, _ = roots
        manager, files = make_manager(source, fake_observer)

        class Event:
            is_directory = False
            src_path = str(source / "d.txt")

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            (source / "d.txt").write_bytes(b"d")
            _NotificationHandler(manager).on_created(Event())
            await asyncio.sleep(0.05)
            await manager.idle()

        asyncio.run(scenario())

        assert files == [source / "d.txt"]

    def test_watch_failure_is_logged_not_raised(self, roots, fake_observer):
        source, _ = roots
        (source / "flaky").mkdir()
        fake_observer.fail_paths.add(str(source / "flaky"))
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()

        asyncio.run(scenario())

        assert manager.watched == [source]


class TestPurge:
    """Test suite for pruning emptied folders."""

    def test_trash_only_folder_cascades_up_to_root(self, roots, fake_observer):
        source, _ = roots
        leaf = source / "a" / "b"
        leaf.mkdir(parents=True)
        (leaf / ".DS_Store").write_bytes(b"\0")
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            removed = await manager.attempt_purge(leaf)
            await manager.idle()
            return removed

        assert asyncio.run(scenario()) is True
        assert not leaf.exists()
        assert not (source / "a").exists()
        assert source.is_dir()
        assert manager.watched == [source]

    def test_cascade_stops_at_first_non_empty_ancestor(self, roots, fake_observer):
        source, _ = roots
        leaf = source / "a" / "b"
        leaf.mkdir(parents=True)
        (source / "a" / "keep.txt").write_bytes(b"k")
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            await manager.attempt_purge(leaf)
            await manager.idle()

        asyncio.run(scenario())

        assert not leaf.exists()
        assert (source / "a" / "keep.txt").exists()
        assert manager.is_watched(source / "a")

    def test_cascade_stops_at_unwatched_parent(self, roots, fake_observer):
        source, _ = roots
        leaf = source / "a" / "b"
        leaf.mkdir(parents=True)
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            manager.unwatch(source / "a")
            await manager.attempt_purge(leaf)
            await manager.idle()

        asyncio.run(scenario())

        assert not leaf.exists()
        assert (source / "a").is_dir()

    def test_root_is_never_removed(self, roots, fake_observer):
        source, _ = roots
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            return await manager.attempt_purge(source)

        assert asyncio.run(scenario()) is False
        assert source.is_dir()
        assert manager.is_watched(source)

    def test_failed_rmdir_keeps_folder_watched(self, roots, fake_observer, monkeypatch):
        source, _ = roots
        leaf = source / "a"
        leaf.mkdir()
        manager, _ = make_manager(source, fake_observer)

        def refuse(path):
            raise PermissionError(13, "Permission denied", str(path))

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            monkeypatch.setattr("mirror_sync.watcher.os.rmdir", refuse)
            return await manager.attempt_purge(leaf)

        assert asyncio.run(scenario()) is False
        assert leaf.is_dir()
        assert manager.is_watched(leaf)

    def test_unwatch_twice_is_safe(self, roots, fake_observer):
        source, _ = roots
        (source / "a").mkdir()
        manager, _ = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            manager.unwatch(source / "a")
            manager.unwatch(source / "a")
            manager.unwatch(Path("/not/watched"))

        asyncio.run(scenario())

        assert not manager.is_watched(source / "a")

    def test_entry_created_during_failed_rmdir_is_listed(self, roots, fake_observer, monkeypatch):
        source, _ = roots
        leaf = source / "run"
        leaf.mkdir()
        manager, files = make_manager(source, fake_observer)

        def writer_got_there_first(path):
            (Path(path) / "late.raw").write_bytes(b"late")
            raise OSError(errno.ENOTEMPTY, "Directory not empty", str(path))

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            monkeypatch.setattr("mirror_sync.watcher.os.rmdir", writer_got_there_first)
            removed = await manager.attempt_purge(leaf)
            await manager.idle()
            return removed

        assert asyncio.run(scenario()) is False
        assert manager.is_watched(leaf)
        assert files == [leaf / "late.raw"]

    def test_folder_recreated_after_purge_is_watched_again(self, roots, fake_observer):
        source, _ = roots
        leaf = source / "run"
        leaf.mkdir()
        manager, files = make_manager(source, fake_observer)

        async def scenario():
            manager.start(asyncio.get_running_loop())
            await manager.idle()
            assert await manager.attempt_purge(leaf) is True
            await manager.idle()
            leaf.mkdir()
            (leaf / "next.raw").write_bytes(b"n")
            manager.notify(leaf)
            await manager.idle()

        asyncio.run(scenario())

        assert manager.is_watched(leaf)
        assert files == [leaf / "next.raw"]
