"""Maximal marginal relevance reranking with a per-source soft cap."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Sequence

from memrecall.config import SearchTuning
from memrecall.models import SearchResult
from memrecall.utils.text import tokenize


@dataclass(frozen=True, slots=True)
class MmrConfig:
    enabled: bool = True
    lambda_: float = 0.72
    source_penalty_weight: float = 0.12
    max_per_source_soft: int = 2

    @classmethod
    def from_tuning(cls, tuning: SearchTuning) -> "MmrConfig":
        return cls(
            enabled=tuning.mmr_enabled,
            lambda_=tuning.mmr_lambda,
            source_penalty_weight=tuning.source_penalty_weight,
            max_per_source_soft=tuning.max_per_source_soft,
        )


def jaccard_similarity(left: FrozenSet[str], right: FrozenSet[str]) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def apply_mmr_rerank(
    results: Sequence[SearchResult], config: MmrConfig | None = None
) -> List[SearchResult]:
    """Greedily order candidates by relevance minus redundancy.

    Each round picks the candidate maximizing::

        score - (1 - lambda) * max_similarity_to_selected - source_penalty

    where the source penalty is ``source_penalty_weight`` per selection its
    source already has at or beyond ``max_per_source_soft``. Ties keep input
    order, so with ``lambda = 1`` the first pick is the top-scoring input.
    """
    config = config or MmrConfig()
    if not config.enabled or len(results) <= 1:
        return list(results)

    lam = max(0.0, min(1.0, config.lambda_))
    soft_cap = max(1, config.max_per_source_soft)
    token_sets = [frozenset(tokenize(result.content)) for result in results]

    remaining = list(range(len(results)))
    selected: List[int] = []
    per_source: Dict[str, int] = {}

    while remaining:
        best_idx = remaining[0]
        best_value = float("-inf")
        for idx in remaining:
            candidate = results[idx]
            redundancy = 0.0
            if selected and lam < 1.0:
                redundancy = max(
                    jaccard_similarity(token_sets[idx], token_sets[other]) for other in selected
                )
            used = per_source.get(candidate.source, 0)
            penalty = 0.0
            if used >= soft_cap:
                penalty = config.source_penalty_weight * (used - soft_cap + 1)
            value = candidate.score - (1.0 - lam) * redundancy - penalty
            if value > best_value:
                best_value = value
                best_idx = idx
        selected.append(best_idx)
        remaining.remove(best_idx)
        source = results[best_idx].source
        per_source[source] = per_source.get(source, 0) + 1

    return [results[idx] for idx in selected]
