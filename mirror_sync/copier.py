"""
File copy engine for Mirror Watcher.

Copies one file to its mirrored location, creating destination folders
as needed.  A source still held open by its writer, or a network share
that dropped the connection mid-copy, is retried after a fixed delay
instead of failing the transfer.  The blocking copy runs in a worker
thread so the event loop stays responsive.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path

from mirror_sync.platform_utils import is_transient
from mirror_sync.retry import RetryPolicy

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024  # 1 MiB copy buffer


class TransferCopier:
    """
    Streams bytes from a source path to a target path.

    Parameters
    ----------
    retry : RetryPolicy
        Policy applied to transient (locked / connection reset) errors.
        Any other ``OSError`` propagates to the caller on the first attempt.
    """

    def __init__(self, retry: RetryPolicy | None = None):
        self._retry = retry or RetryPolicy()

    async def copy(self, source: Path, target: Path) -> int:
        """Copy *source* to *target*; return the number of bytes written."""
        source, target = Path(source), Path(target)
        return await self._retry.run(
            lambda: asyncio.to_thread(self._copy_blocking, source, target),
            is_transient,
            f"copy of {source}",
        )

    @staticmethod
    def _copy_blocking(source: Path, target: Path) -> int:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(source, "rb") as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst, _COPY_CHUNK)
            dst.flush()
            size = os.fstat(dst.fileno()).st_size
        try:
            shutil.copystat(source, target)
        except OSError as exc:
            # Some network shares refuse timestamp updates; the bytes are what matter
            logger.debug("Could not copy timestamps to %s: %s", target, exc)
        return size
