"""Detection and budgeted re-indexing of sources that changed on disk."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from memrecall.index.storage import SQLiteChunkStore
from memrecall.models import ReindexOutcome

LOGGER = logging.getLogger(__name__)

# Absorbs clock and write-flush skew between a file write and its index stamp.
STALE_GRACE_MS = 1000


class StalenessTracker:
    """Finds stale sources and refreshes them without blocking searches for long.

    The stale-source list is cached for ``scan_ttl_ms``; the cache is only a
    cost control over repeated ``stat`` calls and is dropped on every index
    write. Re-indexing is single-flight: concurrent callers join the running
    task instead of starting another one.
    """

    def __init__(
        self,
        store: SQLiteChunkStore,
        reindex: Callable[[str], Awaitable[object]],
        *,
        reindex_budget_ms: float = 250.0,
        scan_ttl_ms: float = 5000.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self._reindex = reindex
        self.reindex_budget_ms = max(0.0, float(reindex_budget_ms))
        self.scan_ttl_ms = max(0.0, float(scan_ttl_ms))
        self._clock = clock
        self._cache_at: Optional[float] = None
        self._cache_sources: List[str] = []
        self._generation = 0
        self._reindex_task: Optional[asyncio.Task] = None

    @property
    def reindex_in_flight(self) -> Optional[asyncio.Task]:
        return self._reindex_task

    def invalidate(self, source: str | None = None) -> None:
        self._generation += 1
        self._cache_at = None
        self._cache_sources = []

    def _cache_fresh(self) -> bool:
        if self._cache_at is None or self.scan_ttl_ms <= 0:
            return False
        return (self._clock() - self._cache_at) * 1000 <= self.scan_ttl_ms

    def get_stale_sources(self, force: bool = False) -> List[str]:
        """Return indexed sources whose file is newer than its chunks, or unreadable."""
        if not force and self._cache_fresh():
            return list(self._cache_sources)
        stale = self._scan()
        self._remember(stale, self._generation)
        return list(stale)

    async def scan_stale_sources(self, force: bool = False) -> List[str]:
        """Same as :meth:`get_stale_sources`, with the ``stat`` calls run in a worker thread."""
        if not force and self._cache_fresh():
            return list(self._cache_sources)
        generation = self._generation
        stale = await asyncio.to_thread(self._scan)
        self._remember(stale, generation)
        return list(stale)

    def _scan(self) -> List[str]:
        stale: List[str] = []
        for source, updated_at in self.store.source_freshness():
            try:
                mtime_ms = os.stat(source).st_mtime * 1000
            except OSError:
                stale.append(source)
                continue
            if mtime_ms > updated_at + STALE_GRACE_MS:
                stale.append(source)
        return stale

    def _remember(self, stale: List[str], generation: int) -> None:
        # An index write during the scan makes its result unsafe to cache.
        if generation != self._generation:
            return
        self._cache_at = self._clock()
        self._cache_sources = stale

    async def ensure_stale_reindex(self, stale_sources: Sequence[str]) -> ReindexOutcome:
        """Start or join a re-index of ``stale_sources`` and wait at most the budget."""
        if not stale_sources:
            return ReindexOutcome()

        if self._reindex_task is None:
            task = asyncio.ensure_future(self._reindex_sources(list(stale_sources)))
            task.add_done_callback(self._clear_task)
            self._reindex_task = task
        task = self._reindex_task

        if self.reindex_budget_ms <= 0:
            await asyncio.shield(task)
            return ReindexOutcome(attempted=True, completed=True)

        done, _ = await asyncio.wait({task}, timeout=self.reindex_budget_ms / 1000)
        if task in done:
            return ReindexOutcome(attempted=True, completed=True)
        LOGGER.info(
            "Stale re-index of %d sources exceeded %.0fms budget; searching current index",
            len(stale_sources),
            self.reindex_budget_ms,
        )
        return ReindexOutcome(attempted=True, timed_out=True)

    async def _reindex_sources(self, sources: List[str]) -> None:
        for source in sources:
            try:
                await self._reindex(source)
            except Exception as exc:
                LOGGER.warning("Stale re-index of %s failed: %s", source, exc)

    def _clear_task(self, task: asyncio.Task) -> None:
        if self._reindex_task is task:
            self._reindex_task = None
