"""
Bounded worker pool for chunk jobs.

Jobs run concurrently up to a fixed limit. Exceptions raised by individual
jobs are collected instead of cancelling their siblings; the caller decides
which of them are fatal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchExecutor:
    """Runs async jobs through an ``asyncio.Semaphore``."""

    def __init__(self, concurrency: int = 1):
        """
        Initialize the batch executor.

        Args:
            concurrency: Maximum number of jobs running at the same time
        """
        self.concurrency = max(1, concurrency)

    async def run_all(
        self,
        items: Sequence[T],
        job_fn: Callable[[T], Awaitable[R]],
    ) -> list[R | BaseException]:
        """
        Run ``job_fn`` for every item.

        Args:
            items: Work items, started in order
            job_fn: Async function processing a single item

        Returns:
            One entry per item, in input order: the job's result or the
            exception it raised
        """
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(item: T) -> R:
            async with semaphore:
                return await job_fn(item)

        results = await asyncio.gather(
            *(run_one(item) for item in items), return_exceptions=True
        )

        failures = sum(1 for r in results if isinstance(r, BaseException))
        if failures:
            logger.debug("%d of %d job(s) raised", failures, len(results))
        return list(results)
