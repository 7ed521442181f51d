"""
Sliding-window cache over time-keyed data.

Optimised for widening range queries ("history up to the current block"):
only the parts of a requested window not already covered are fetched from
the backing source.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from loguru import logger

from dexcore.errors import InvalidRangeError
from dexcore.models import Range
from dexcore.retry import retry_async

T = TypeVar("T")

TIMECACHE_RETRIES = 5


class TimeCache(Generic[T]):
    """
    Time-ordered data plus the inclusive range it covers.

    Every cached element's key lies within ``covered``. Refreshes are
    serialized; a concurrent caller waits for the one in flight.
    """

    def __init__(
        self,
        fetch: Callable[[int, int], Awaitable[list[T]]],
        key: Callable[[T], int],
        retries: int = TIMECACHE_RETRIES,
    ):
        self.fetch = fetch
        self.key = key
        self.retries = retries
        self.data: list[T] = []
        self.covered = Range()
        self._lock = asyncio.Lock()

    async def _fetch(self, start: int, end: int) -> list[T]:
        logger.debug(f"TimeCache fetching [{start}, {end}]")
        return await retry_async(self.fetch, start, end, attempts=self.retries)

    async def refresh(
        self, start: int, end: int, prune: Callable[[T], bool] | None = None
    ) -> list[T]:
        """
        Return data for ``[start, end]``, fetching only uncovered edges.

        Args:
            start: Inclusive window start
            end: Inclusive window end
            prune: Cached elements for which this returns True are dropped

        Raises:
            InvalidRangeError: Negative or inverted bounds
            RetryExhaustedError: A backing fetch failed; the cache is left
                as it was
        """
        if start < 0 or end < 0 or start > end:
            raise InvalidRangeError(f"Invalid range start={start}, end={end}")

        async with self._lock:
            covered = self.covered

            kept = [
                item
                for item in self.data
                if start <= self.key(item) <= end and not (prune is not None and prune(item))
            ]

            before: list[T] = []
            if start < covered.start:
                before = await self._fetch(start, min(end, covered.start - 1))

            after: list[T] = []
            if end > covered.end:
                after = await self._fetch(max(covered.end + 1, start), end)

            merged = before + kept + after
            merged.sort(key=self.key)

            self.data = merged
            self.covered = Range(start=start, end=end)
            return list(merged)

    def clear(self) -> None:
        self.data = []
        self.covered = Range()
