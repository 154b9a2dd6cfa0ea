"""Recency-based score decay for search candidates."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from pathlib import PurePath
from typing import List, Optional, Sequence

from memrecall.config import DEFAULT_EVERGREEN_MARKERS, DEFAULT_TEMPORAL_TERMS, SearchTuning
from memrecall.models import SearchResult

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class DecayConfig:
    enabled: bool = True
    half_life_days: float = 45.0
    temporal_half_life_days: float = 21.0
    evergreen_half_life_days: float = 180.0
    min_multiplier: float = 0.35
    temporal_terms: Sequence[str] = DEFAULT_TEMPORAL_TERMS
    evergreen_markers: Sequence[str] = DEFAULT_EVERGREEN_MARKERS

    @classmethod
    def from_tuning(cls, tuning: SearchTuning) -> "DecayConfig":
        return cls(
            enabled=tuning.decay_enabled,
            half_life_days=tuning.half_life_days,
            temporal_half_life_days=tuning.temporal_half_life_days,
            evergreen_half_life_days=tuning.evergreen_half_life_days,
            min_multiplier=tuning.min_multiplier,
            temporal_terms=tuning.temporal_terms,
            evergreen_markers=tuning.evergreen_markers,
        )


def has_temporal_intent(query: str, terms: Sequence[str] = DEFAULT_TEMPORAL_TERMS) -> bool:
    """True when the query asks for recent information ("latest", "today", ...)."""
    text = " ".join(str(query or "").lower().split())
    for term in terms:
        phrase = " ".join(term.lower().split())
        if phrase and re.search(rf"\b{re.escape(phrase)}\b", text):
            return True
    return False


def is_evergreen(
    result: SearchResult, markers: Sequence[str] = DEFAULT_EVERGREEN_MARKERS
) -> bool:
    """True for durable content such as profile files or pinned memory facts."""
    name = PurePath(result.source).name.lower()
    content = result.content.lower()
    return any(marker in name or marker in content for marker in markers)


def decay_multiplier(age_days: float, half_life_days: float, min_multiplier: float) -> float:
    floor = max(0.0, min(1.0, min_multiplier))
    if half_life_days <= 0:
        return 1.0
    return max(floor, 2 ** (-max(0.0, age_days) / half_life_days))


def apply_temporal_decay(
    results: Sequence[SearchResult],
    query: str,
    config: DecayConfig | None = None,
    *,
    now_ms: Optional[int] = None,
) -> List[SearchResult]:
    """Return copies of ``results`` with ``score`` scaled by recency.

    Evergreen candidates use the long half-life; otherwise a query with
    temporal intent selects the short one. Only positive scores are scaled,
    so a score never rises and never falls below ``score * min_multiplier``.
    ``vector_score`` and ``bm25_score`` are carried over untouched.
    """
    config = config or DecayConfig()
    if not config.enabled:
        return [replace(result) for result in results]

    now = int(time.time() * 1000) if now_ms is None else now_ms
    temporal = has_temporal_intent(query, config.temporal_terms)

    decayed: List[SearchResult] = []
    for result in results:
        if is_evergreen(result, config.evergreen_markers):
            half_life = config.evergreen_half_life_days
        elif temporal:
            half_life = config.temporal_half_life_days
        else:
            half_life = config.half_life_days

        score = result.score
        if score > 0 and result.updated_at > 0:
            age_days = (now - result.updated_at) / DAY_MS
            score *= decay_multiplier(age_days, half_life, config.min_multiplier)
        decayed.append(replace(result, score=score))
    return decayed
