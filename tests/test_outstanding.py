"""
Unit Tests for the Outstanding Tracker
"""

import logging
from pathlib import Path

from mirror_sync.outstanding import OutstandingCountFilter, OutstandingTracker


class TestOutstandingTracker:
    """Test suite for OutstandingTracker."""

    def test_add_and_discard(self):
        tracker = OutstandingTracker()
        tracker.add(Path("/src/a.txt"))
        tracker.add("/src/b.txt")

        assert len(tracker) == 2
        assert Path("/src/b.txt") in tracker

        tracker.discard("/src/a.txt")
        tracker.discard("/src/never-added.txt")

        assert tracker.snapshot() == [Path("/src/b.txt")]

    def test_adding_twice_keeps_one_entry(self):
        tracker = OutstandingTracker()
        tracker.add("/src/a.txt")
        tracker.add("/src/a.txt")
        assert len(tracker) == 1

    def test_report_lists_paths(self):
        tracker = OutstandingTracker()
        assert tracker.report() == "No outstanding transfers."

        tracker.add("/src/z.txt")
        tracker.add("/src/a.txt")
        report = tracker.report()

        assert report.startswith("2 outstanding transfer(s):")
        assert report.index(str(Path("/src/a.txt"))) < report.index(str(Path("/src/z.txt")))


class TestOutstandingCountFilter:
    """Test suite for the log record filter."""

    def test_filter_sets_count(self):
        tracker = OutstandingTracker()
        tracker.add("/src/a.txt")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        assert OutstandingCountFilter(tracker).filter(record) is True
        assert record.outstanding == 1
