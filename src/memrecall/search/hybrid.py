"""Hybrid lexical (BM25) and vector (cosine) scoring."""

from __future__ import annotations

import math
from collections import Counter
from typing import Dict, List, Sequence

import numpy as np

from memrecall.models import MemoryChunk, SearchResult
from memrecall.utils.text import expand_query, tokenize

BM25_K1 = 1.2
BM25_B = 0.75


def cosine_similarity(a: np.ndarray | Sequence[float], b: np.ndarray | Sequence[float]) -> float:
    """Cosine similarity, or 0 when either vector is empty, zero or the sizes differ."""
    left = np.asarray(a, dtype="float32")
    right = np.asarray(b, dtype="float32")
    if left.size == 0 or right.size == 0 or left.shape != right.shape:
        return 0.0
    denom = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if denom <= 0.0:
        return 0.0
    score = float(np.dot(left, right)) / denom
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def bm25_scores(query: str, chunks: Sequence[MemoryChunk]) -> Dict[str, float]:
    """Score every chunk against the expanded query, normalized to the batch maximum.

    Corpus statistics come from ``chunks`` alone, so they reflect exactly the
    snapshot being searched. The best lexical match scores 1.0; when no query
    term occurs anywhere every chunk scores 0.
    """
    terms = tokenize(expand_query(query))
    if not terms or not chunks:
        return {chunk.id: 0.0 for chunk in chunks}

    docs = [(chunk.id, tokenize(chunk.content)) for chunk in chunks]
    total = len(docs)
    avg_len = sum(len(tokens) for _, tokens in docs) / total

    doc_freq = {term: 0 for term in set(terms)}
    token_sets = [set(tokens) for _, tokens in docs]
    for term in doc_freq:
        doc_freq[term] = sum(1 for token_set in token_sets if term in token_set)

    raw: Dict[str, float] = {}
    for doc_id, tokens in docs:
        tf = Counter(tokens)
        score = 0.0
        for term in terms:
            freq = tf.get(term, 0)
            if freq <= 0:
                continue
            n = doc_freq[term]
            idf = math.log(1 + (total - n + 0.5) / (n + 0.5))
            denom = freq + BM25_K1 * (1 - BM25_B + BM25_B * (len(tokens) / max(1.0, avg_len)))
            score += idf * (freq * (BM25_K1 + 1)) / max(0.0001, denom)
        raw[doc_id] = score

    max_score = max(raw.values(), default=0.0)
    if max_score <= 0:
        return {doc_id: 0.0 for doc_id in raw}
    return {doc_id: score / max_score for doc_id, score in raw.items()}


def hybrid_search(
    query: str,
    query_embedding: np.ndarray | Sequence[float],
    chunks: Sequence[MemoryChunk],
    *,
    vector_weight: float,
    bm25_weight: float,
    top_k: int | None = None,
) -> List[SearchResult]:
    """Rank ``chunks`` by ``vector * vector_weight + bm25 * bm25_weight``.

    No minimum score is applied; ``top_k`` only trims the sorted list.
    """
    if not chunks:
        return []
    lexical = bm25_scores(query, chunks)

    merged: List[SearchResult] = []
    for chunk in chunks:
        vector_score = cosine_similarity(query_embedding, chunk.embedding)
        bm25_score = lexical.get(chunk.id, 0.0)
        merged.append(
            SearchResult(
                chunk_id=chunk.id,
                source=chunk.source,
                content=chunk.content,
                score=vector_score * vector_weight + bm25_score * bm25_weight,
                vector_score=vector_score,
                bm25_score=bm25_score,
                updated_at=chunk.updated_at,
            )
        )

    merged.sort(key=lambda result: result.score, reverse=True)
    if top_k is not None:
        return merged[: max(1, top_k)]
    return merged
