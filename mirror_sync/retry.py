"""Retry policy shared by the copier and the comparator.

A failed operation is re-entered after a fixed delay for as long as the
error is retryable and the attempt ceiling (if any) has not been reached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Fixed-delay retry policy.

    Parameters
    ----------
    delay : float
        Seconds to wait before re-entering the operation.
    max_attempts : int
        Total attempts allowed; 0 means retry forever.
    warn_every : int
        Every Nth failed attempt is logged at WARNING, the others at DEBUG,
        so an operation stuck for hours does not flood the log.
    """

    delay: float = 5.0
    max_attempts: int = 0
    warn_every: int = 10

    def should_retry(self, attempt: int) -> bool:
        """Return True if another attempt may follow failed attempt number *attempt*."""
        return self.max_attempts <= 0 or attempt < self.max_attempts

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retryable: Callable[[BaseException], bool],
        description: str,
    ) -> T:
        """Await *operation* until it succeeds or fails with a non-retryable error."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if not retryable(exc):
                    raise
                if not self.should_retry(attempt):
                    logger.error(
                        "Giving up on %s after %d attempts: %s",
                        description, attempt, exc,
                    )
                    raise
                level = logging.DEBUG
                if attempt == 1 or (self.warn_every and attempt % self.warn_every == 0):
                    level = logging.WARNING
                logger.log(
                    level,
                    "Retrying %s in %.1fs (attempt %d failed: %s)",
                    description, self.delay, attempt, exc,
                )
            await asyncio.sleep(self.delay)
