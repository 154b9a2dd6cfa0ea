"""Core memory engine data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional

import numpy as np

SearchMode = Literal["hybrid", "fallback-local", "fallback-lexical"]
FallbackReason = Literal["query-embedding-failed", "stale-index", "index-embedding-failed"]


@dataclass(slots=True)
class ChunkRecord:
    """One window of a source document before it is embedded."""

    id: str
    index: int
    content: str


@dataclass(slots=True)
class MemoryChunk:
    """Indexed unit of content, one row of the chunk store."""

    id: str
    source: str
    content: str
    embedding: np.ndarray
    content_hash: str
    updated_at: int


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    source: str
    content: str
    score: float
    vector_score: float
    bm25_score: float
    updated_at: int = 0


@dataclass(slots=True)
class QueryEmbedding:
    """Outcome of embedding a query through the provider chain.

    ``embedding`` is empty when every provider failed, which forces a
    lexical-only search.
    """

    embedding: np.ndarray
    mode: SearchMode
    fallback_reason: Optional[FallbackReason] = None


@dataclass(slots=True)
class MemorySearchDiagnostics:
    has_search: bool = False
    updated_at_ms: int = 0
    mode: SearchMode = "hybrid"
    stale_sources_before: int = 0
    stale_sources_after: int = 0
    stale_reindex_attempted: bool = False
    stale_reindex_completed: bool = False
    stale_reindex_timed_out: bool = False
    fallback_used: bool = False
    fallback_reason: Optional[FallbackReason] = None
    index_fallback_used: bool = False
    latency_ms: int = 0
    result_count: int = 0


@dataclass(slots=True)
class ReindexOutcome:
    attempted: bool = False
    completed: bool = False
    timed_out: bool = False


@dataclass(slots=True)
class SearchOutcome:
    results: List[SearchResult]
    diagnostics: MemorySearchDiagnostics
    search_id: str
