"""
Transfer orchestration for Mirror Watcher.

Each file handed over by the watcher becomes a ``TransferJob`` that runs
through a fixed sequence of states:

    COPYING -> SETTLING -> VERIFYING -> MATCHED | MISMATCHED

``MATCHED`` deletes the source file, clears it from the outstanding set
and schedules a prune of its folder.  ``MISMATCHED`` re-enters COPYING a
bounded number of times, then stays terminal with both files on disk.
``FAILED`` is terminal for a copy error that is not worth retrying, or a
file that disappeared during verification.  Jobs that do not reach
``MATCHED`` stay outstanding for the operator.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from mirror_sync.comparator import Comparator
from mirror_sync.copier import TransferCopier
from mirror_sync.outstanding import OutstandingTracker

if TYPE_CHECKING:
    from mirror_sync.watcher import WatchManager

logger = logging.getLogger(__name__)


class JobState(enum.Enum):
    COPYING = "copying"
    SETTLING = "settling"
    VERIFYING = "verifying"
    MATCHED = "matched"
    MISMATCHED = "mismatched"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.MATCHED, JobState.MISMATCHED, JobState.FAILED})


def destination_for(source_root: Path, destination_root: Path, source: Path) -> Path:
    """Return the mirrored path of *source*; raises ValueError if it is outside the root."""
    return Path(destination_root) / Path(source).relative_to(source_root)


@dataclass
class TransferJob:
    """One file moving from the source tree to the destination tree."""
    source: Path
    destination: Path
    relative: Path
    state: JobState = JobState.COPYING
    transitions: list[JobState] = field(default_factory=list)
    copies: int = 0
    bytes_copied: int = 0
    started: float = field(default_factory=time.time)
    finished: float = 0.0
    error: str = ""

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0

    @property
    def timestamp_str(self) -> str:
        """Human-readable timestamp of when the job finished."""
        if self.finished:
            return datetime.fromtimestamp(self.finished).strftime("%Y-%m-%d %H:%M:%S")
        return ""


@dataclass
class TransferStats:
    """Aggregated transfer statistics."""
    started: int = 0
    matched: int = 0
    mismatched: int = 0
    failed: int = 0
    rejected: int = 0
    total_bytes: int = 0

    def record(self, job: TransferJob) -> None:
        if job.state is JobState.MATCHED:
            self.matched += 1
            self.total_bytes += job.bytes_copied
        elif job.state is JobState.MISMATCHED:
            self.mismatched += 1
        elif job.state is JobState.FAILED:
            self.failed += 1

    def summary(self) -> str:
        return (
            f"{self.started} started, {self.matched} moved ({self.total_bytes:,} bytes), "
            f"{self.mismatched} mismatched, {self.failed} failed, {self.rejected} rejected"
        )


class TransferOrchestrator:
    """
    Runs the copy/settle/verify/delete state machine for every submitted file.

    Parameters
    ----------
    source_root, destination_root : Path
        The mirrored roots; destinations are derived with ``destination_for``.
    copier : TransferCopier
        Moves the bytes.
    comparator : Comparator
        Verifies source against destination after the settle window.
    outstanding : OutstandingTracker
        In-flight set; a path leaves it only after a verified delete.
    watches : WatchManager, optional
        Asked to prune the source folder after each successful delete.
    settle_delay : float
        Seconds between the end of a copy and the start of verification.
    purge_delay : float
        Seconds between deleting a source file and pruning its folder.
    mismatch_recopy_attempts : int
        How many times a copy that failed verification is redone.
    """

    def __init__(
        self,
        source_root: Path,
        destination_root: Path,
        copier: TransferCopier,
        comparator: Comparator,
        outstanding: OutstandingTracker,
        watches: "WatchManager | None" = None,
        settle_delay: float = 10.0,
        purge_delay: float = 5.0,
        mismatch_recopy_attempts: int = 1,
    ):
        self.source_root = Path(source_root)
        self.destination_root = Path(destination_root)
        self._copier = copier
        self._comparator = comparator
        self._outstanding = outstanding
        self._watches = watches
        self._settle_delay = settle_delay
        self._purge_delay = purge_delay
        self._max_recopies = max(0, mismatch_recopy_attempts)
        self._active: dict[str, TransferJob] = {}
        self._tasks: set[asyncio.Task] = set()
        self.jobs: list[TransferJob] = []
        self.stats = TransferStats()

    @property
    def active_jobs(self) -> list[TransferJob]:
        return list(self._active.values())

    # ---- submission ----

    def submit(self, source: Path) -> TransferJob | None:
        """Start a transfer for *source*; return the job, or None if rejected."""
        source = Path(source)
        try:
            destination = destination_for(self.source_root, self.destination_root, source)
        except ValueError:
            logger.error("Refusing %s: not under source root %s", source, self.source_root)
            self.stats.rejected += 1
            return None

        key = os.path.normcase(str(destination))
        current = self._active.get(key)
        if current is not None:
            if current.source == source:
                logger.debug("Transfer of %s already in progress", source)
            else:
                logger.warning(
                    "Refusing %s: %s is already the target of %s",
                    source, destination, current.source,
                )
                self.stats.rejected += 1
            return None

        job = TransferJob(
            source=source,
            destination=destination,
            relative=source.relative_to(self.source_root),
        )
        self._active[key] = job
        self.jobs.append(job)
        self.stats.started += 1
        self._outstanding.add(source)

        task = asyncio.get_running_loop().create_task(self.run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def drain(self) -> None:
        """Wait for every in-flight job to reach a terminal state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    # ---- state machine ----

    async def run(self, job: TransferJob) -> TransferJob:
        """Drive *job* through its states until it is terminal."""
        try:
            while True:
                if not await self._copy(job):
                    break
                await self._settle(job)
                same = await self._verify(job)
                if same is None:
                    break
                if same:
                    await self._matched(job)
                    break
                if job.copies > self._max_recopies:
                    self._mismatched(job)
                    break
                logger.warning(
                    "Copy of %s does not match its source; copying again (%d of %d)",
                    job.source, job.copies, self._max_recopies,
                )
        except asyncio.CancelledError:
            logger.info("Abandoned transfer of %s in state %s", job.source, job.state.value)
            raise
        except Exception as exc:
            job.error = str(exc)
            self._enter(job, JobState.FAILED)
            logger.exception("Unexpected error transferring %s", job.source)
        finally:
            self._active.pop(os.path.normcase(str(job.destination)), None)
            if job.terminal:
                job.finished = time.time()
                self.stats.record(job)
        return job

    def _enter(self, job: TransferJob, state: JobState) -> None:
        job.state = state
        job.transitions.append(state)
        logger.debug("%s -> %s", job.source, state.value)

    async def _copy(self, job: TransferJob) -> bool:
        self._enter(job, JobState.COPYING)
        job.copies += 1
        logger.info("Copying %s -> %s", job.source, job.destination)
        try:
            job.bytes_copied = await self._copier.copy(job.source, job.destination)
        except OSError as exc:
            job.error = str(exc)
            self._enter(job, JobState.FAILED)
            logger.error("Copy failed for %s: %s (left for manual attention)", job.source, exc)
            return False
        return True

    async def _settle(self, job: TransferJob) -> None:
        self._enter(job, JobState.SETTLING)
        await asyncio.sleep(self._settle_delay)

    async def _verify(self, job: TransferJob) -> bool | None:
        self._enter(job, JobState.VERIFYING)
        try:
            return await self._comparator.compare(job.source, job.destination)
        except OSError as exc:
            job.error = str(exc)
            self._enter(job, JobState.FAILED)
            logger.error("Verification of %s abandoned: %s", job.source, exc)
            return None

    async def _matched(self, job: TransferJob) -> None:
        self._enter(job, JobState.MATCHED)
        logger.info("Verified %s (%d bytes); deleting source", job.destination, job.bytes_copied)
        try:
            await asyncio.to_thread(os.remove, job.source)
        except FileNotFoundError:
            logger.info("Source %s was already gone", job.source)
        except OSError as exc:
            job.error = str(exc)
            logger.error("Could not delete %s: %s", job.source, exc)
            return
        self._outstanding.discard(job.source)
        if self._watches is not None:
            self._watches.forget(job.source)
            self._watches.schedule_purge(job.source.parent, self._purge_delay)

    def _mismatched(self, job: TransferJob) -> None:
        self._enter(job, JobState.MISMATCHED)
        job.error = "content differs between source and destination"
        logger.error(
            "!!! DIFFERENT: %s and %s after %d copies; both left in place",
            job.source, job.destination, job.copies,
        )
