"""Memory index manager: the asyncio facade over indexing and hybrid search."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import List, Optional

import numpy as np

from memrecall.config import MemoryConfig, SearchTuning
from memrecall.diagnostics import DiagnosticsRecorder, log_degraded
from memrecall.embedding.encoder import (
    EmbeddingProvider,
    LocalHashEmbeddings,
    create_embedding_provider,
)
from memrecall.index.indexer import Indexer, IndexStats
from memrecall.index.staleness import StalenessTracker
from memrecall.index.storage import SQLiteChunkStore
from memrecall.models import (
    FallbackReason,
    MemorySearchDiagnostics,
    QueryEmbedding,
    SearchOutcome,
    SearchResult,
)
from memrecall.search.decay import DecayConfig, apply_temporal_decay
from memrecall.search.hybrid import hybrid_search
from memrecall.search.mmr import MmrConfig, apply_mmr_rerank
from memrecall.utils.files import read_text_or_none

LOGGER = logging.getLogger(__name__)

CANDIDATE_POOL_FACTOR = 4


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class MemoryIndexManager:
    """Owns one chunk store and answers recall queries against it.

    Every public coroutine absorbs provider failures, stale files and missing
    sources; callers only ever see degraded results and diagnostics, never an
    exception from those conditions.
    """

    def __init__(
        self,
        config: MemoryConfig,
        *,
        provider: EmbeddingProvider | None = None,
        fallback_provider: EmbeddingProvider | None = None,
        stale_reindex_budget_ms: float | None = None,
        stale_scan_ttl_ms: float | None = None,
        tuning: SearchTuning | None = None,
    ) -> None:
        self.config = config
        self.tuning = tuning or SearchTuning.from_env()
        self.store = SQLiteChunkStore(config.resolve_db_path())
        self.fallback_provider = fallback_provider or LocalHashEmbeddings()
        self.provider = provider or self._create_provider()

        self.staleness = StalenessTracker(
            self.store,
            self.index_file,
            reindex_budget_ms=(
                self.tuning.stale_reindex_budget_ms
                if stale_reindex_budget_ms is None
                else stale_reindex_budget_ms
            ),
            scan_ttl_ms=(
                self.tuning.stale_scan_ttl_ms if stale_scan_ttl_ms is None else stale_scan_ttl_ms
            ),
        )
        self.indexer = Indexer(
            self.provider,
            self.fallback_provider,
            self.store,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            on_write=self.staleness.invalidate,
        )
        self.diagnostics = DiagnosticsRecorder()
        self._dirty = True
        self._sync_task: Optional[asyncio.Task] = None
        self._warm_task: Optional[asyncio.Task] = None

    def _create_provider(self) -> EmbeddingProvider:
        try:
            return create_embedding_provider(
                self.config.embedding_provider,
                model=self.config.embedding_model,
                api_key=self.config.embedding_api_key,
                cache=self.store,
            )
        except Exception as exc:
            log_degraded(
                LOGGER,
                phase="index",
                reason="index-embedding-failed",
                mode="fallback-local",
                detail=f"provider_init:{type(exc).__name__}",
            )
            return self.fallback_provider

    @property
    def dirty(self) -> bool:
        return self._dirty

    async def __aenter__(self) -> "MemoryIndexManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Wait for in-flight background work, then close the store."""
        pending = [
            task
            for task in (self._warm_task, self._sync_task, self.staleness.reindex_in_flight)
            if task is not None and not task.done()
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.store.close()

    # Indexing

    async def index_file(self, path: Path | str) -> str:
        status = await self.indexer.index_file(path)
        if status != "failed":
            self._dirty = False
        return status

    async def index_directory(self, directory: Path | str) -> IndexStats:
        stats = await self.indexer.index_directory(directory)
        self._dirty = False
        return stats

    async def sync(self) -> None:
        """Re-index every configured source directory; concurrent calls share one run."""
        if self._sync_task is None:
            task = asyncio.ensure_future(self._run_sync())
            task.add_done_callback(self._clear_sync_task)
            self._sync_task = task
        await asyncio.shield(self._sync_task)

    async def _run_sync(self) -> None:
        for source_dir in self.config.source_dirs:
            stats = await self.index_directory(source_dir)
            LOGGER.info(
                "Synced %s: inserted=%d updated=%d skipped=%d removed=%d failed=%d",
                source_dir,
                stats.inserted,
                stats.updated,
                stats.skipped,
                stats.removed,
                stats.failed,
            )
        self._dirty = False

    def _clear_sync_task(self, task: asyncio.Task) -> None:
        if self._sync_task is task:
            self._sync_task = None

    def warm_session(self) -> None:
        """Kick off a background sync when configured and the index is dirty."""
        if not self.config.sync_on_session_start or not self._dirty or self._sync_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; session warm-up skipped")
            return
        self._warm_task = loop.create_task(self._warm())

    async def _warm(self) -> None:
        try:
            await self.sync()
        except Exception as exc:
            self._dirty = True
            LOGGER.warning("Background memory sync failed: %s", exc)

    # Search

    async def _embed_query(self, query: str) -> QueryEmbedding:
        try:
            vector = await asyncio.to_thread(self.provider.embed, query)
            return QueryEmbedding(np.asarray(vector, dtype="float32"), "hybrid")
        except Exception as exc:
            log_degraded(
                LOGGER,
                phase="search",
                reason="query-embedding-failed",
                mode="fallback-local",
                detail=type(exc).__name__,
            )
        try:
            vector = await asyncio.to_thread(self.fallback_provider.embed, query)
            return QueryEmbedding(
                np.asarray(vector, dtype="float32"), "fallback-local", "query-embedding-failed"
            )
        except Exception:
            log_degraded(
                LOGGER,
                phase="search",
                reason="query-embedding-failed",
                mode="fallback-lexical",
                detail="all_embedding_providers_failed",
            )
            return QueryEmbedding(
                np.zeros(0, dtype="float32"), "fallback-lexical", "query-embedding-failed"
            )

    async def search_with_diagnostics(
        self,
        query: str,
        top_k: int | None = None,
        search_id: str | None = None,
    ) -> SearchOutcome:
        started = time.perf_counter()
        index_fallbacks_at_start = self.indexer.fallback_count

        stale_before = await self.staleness.scan_stale_sources()
        reindex = None
        if stale_before:
            log_degraded(
                LOGGER,
                phase="search",
                reason="stale-index",
                mode="fallback-lexical",
                detail=f"sources={len(stale_before)}",
            )
            reindex = await self.staleness.ensure_stale_reindex(stale_before)
        force_rescan = reindex is not None and reindex.completed
        stale_after = await self.staleness.scan_stale_sources(force=force_rescan)

        query_embedding = await self._embed_query(query)
        chunks = self.store.load_chunks()

        requested = max(1, int(top_k or self.config.top_k or 1))
        candidate_k = requested * CANDIDATE_POOL_FACTOR
        if query_embedding.mode == "fallback-lexical":
            vector_weight, bm25_weight = 0.0, 1.0
        else:
            vector_weight = self.config.hybrid_vector_weight
            bm25_weight = self.config.hybrid_bm25_weight

        merged = hybrid_search(
            query,
            query_embedding.embedding,
            chunks,
            vector_weight=vector_weight,
            bm25_weight=bm25_weight,
            top_k=candidate_k,
        )
        decayed = apply_temporal_decay(merged, query, DecayConfig.from_tuning(self.tuning))
        reranked = apply_mmr_rerank(decayed, MmrConfig.from_tuning(self.tuning))
        results = reranked[:requested]

        index_fallback_used = self.indexer.fallback_count > index_fallbacks_at_start
        fallback_reason: FallbackReason | None = query_embedding.fallback_reason
        if fallback_reason is None and stale_after:
            fallback_reason = "stale-index"
        if fallback_reason is None and index_fallback_used:
            fallback_reason = "index-embedding-failed"

        diagnostics = MemorySearchDiagnostics(
            has_search=True,
            updated_at_ms=int(time.time() * 1000),
            mode=query_embedding.mode,
            stale_sources_before=len(stale_before),
            stale_sources_after=len(stale_after),
            stale_reindex_attempted=bool(reindex and reindex.attempted),
            stale_reindex_completed=bool(reindex and reindex.completed),
            stale_reindex_timed_out=bool(reindex and reindex.timed_out),
            fallback_used=query_embedding.mode != "hybrid"
            or bool(stale_after)
            or index_fallback_used,
            fallback_reason=fallback_reason,
            index_fallback_used=index_fallback_used,
            latency_ms=_elapsed_ms(started),
            result_count=len(results),
        )
        resolved_id = str(search_id or uuid.uuid4())
        self.diagnostics.record(resolved_id, diagnostics)
        return SearchOutcome(results=results, diagnostics=diagnostics, search_id=resolved_id)

    async def search(self, query: str, top_k: int | None = None) -> List[SearchResult]:
        outcome = await self.search_with_diagnostics(query, top_k)
        return outcome.results

    async def get_source_content_by_chunk_id(self, chunk_id: str) -> str | None:
        source = self.store.source_for_chunk(chunk_id)
        if not source:
            return None
        return read_text_or_none(Path(source))

    def get_last_search_diagnostics(self) -> MemorySearchDiagnostics:
        return self.diagnostics.last()

    def get_search_diagnostics(self, search_id: str) -> MemorySearchDiagnostics | None:
        return self.diagnostics.get(search_id)

    def prune(self) -> int:
        """Drop chunks whose source file has been deleted."""
        removed = self.store.remove_missing_sources()
        for source in list(self.indexer.file_hashes):
            if not Path(source).exists():
                del self.indexer.file_hashes[source]
        if removed:
            self.staleness.invalidate()
        return removed
