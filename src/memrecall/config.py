"""Memory engine configuration defaults and environment loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal, Mapping, Sequence

ENV_PREFIX = "MEMRECALL_"

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

ProviderName = Literal["openai", "local", "sentence-transformers"]

PROVIDER_NAMES: tuple[str, ...] = ("openai", "local", "sentence-transformers")

DEFAULT_TEMPORAL_TERMS: tuple[str, ...] = (
    "latest",
    "current",
    "currently",
    "today",
    "tonight",
    "now",
    "recent",
    "recently",
    "yesterday",
    "this week",
    "this month",
    "lately",
    "newest",
    "upcoming",
    "status",
)

DEFAULT_EVERGREEN_MARKERS: tuple[str, ...] = (
    "memory.md",
    "profile",
    "identity",
    "preferences",
    "[memory:",
    "## important facts",
)


def _default_db_path() -> Path:
    return Path(".agent") / "memory.db"


def _default_source_dirs() -> tuple[Path, ...]:
    return (Path("memory"),)


def _to_bool(raw: str | None, fallback: bool) -> bool:
    if raw is None:
        return fallback
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return fallback


def _to_int(raw: str | None, fallback: int, low: int, high: int) -> int:
    if raw is None or not raw.strip():
        return fallback
    try:
        value = int(float(raw))
    except ValueError:
        return fallback
    return max(low, min(high, value))


def _to_float(raw: str | None, fallback: float, low: float, high: float) -> float:
    if raw is None or not raw.strip():
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    if value != value:  # NaN
        return fallback
    return max(low, min(high, value))


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _first(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if value is not None:
            return value
    return None


@dataclass(frozen=True, slots=True)
class MemoryConfig:
    """Immutable configuration for one memory index manager."""

    db_path: Path = field(default_factory=_default_db_path)
    embedding_provider: ProviderName = "openai"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_api_key: str = ""
    chunk_size: int = 400
    chunk_overlap: int = 80
    hybrid_vector_weight: float = 0.7
    hybrid_bm25_weight: float = 0.3
    top_k: int = 5
    sync_on_session_start: bool = True
    source_dirs: Sequence[Path] = field(default_factory=_default_source_dirs)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        db_path = Path(self.db_path)
        if db_path.is_absolute() or base_dir is None:
            return db_path
        return base_dir / db_path

    def resolve_source_dirs(self, base_dir: Path | None = None) -> list[Path]:
        resolved = []
        for source_dir in self.source_dirs:
            path = Path(source_dir)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            resolved.append(path.resolve())
        return resolved

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        base_dir: Path | None = None,
    ) -> "MemoryConfig":
        """Build a config from ``MEMRECALL_*`` variables, falling back to defaults."""
        env = os.environ if env is None else env
        base = cls()

        provider = (env.get(f"{ENV_PREFIX}EMBEDDING_PROVIDER") or "").strip().lower()
        if provider not in PROVIDER_NAMES:
            provider = base.embedding_provider

        db_raw = env.get(f"{ENV_PREFIX}DB_PATH")
        db_path = Path(db_raw) if db_raw else base.db_path
        source_dirs = [Path(item) for item in _split_csv(env.get(f"{ENV_PREFIX}SOURCE_DIRS"))]

        config = cls(
            db_path=db_path,
            embedding_provider=provider,  # type: ignore[arg-type]
            embedding_model=env.get(f"{ENV_PREFIX}EMBEDDING_MODEL") or base.embedding_model,
            embedding_api_key=_first(env, "OPENAI_API_KEY", f"{ENV_PREFIX}EMBEDDING_API_KEY")
            or base.embedding_api_key,
            chunk_size=_to_int(env.get(f"{ENV_PREFIX}CHUNK_SIZE"), base.chunk_size, 1, 100_000),
            chunk_overlap=_to_int(
                env.get(f"{ENV_PREFIX}CHUNK_OVERLAP"), base.chunk_overlap, 0, 50_000
            ),
            hybrid_vector_weight=_to_float(
                env.get(f"{ENV_PREFIX}VECTOR_WEIGHT"), base.hybrid_vector_weight, 0.0, 1.0
            ),
            hybrid_bm25_weight=_to_float(
                env.get(f"{ENV_PREFIX}BM25_WEIGHT"), base.hybrid_bm25_weight, 0.0, 1.0
            ),
            top_k=_to_int(env.get(f"{ENV_PREFIX}TOP_K"), base.top_k, 1, 1_000),
            sync_on_session_start=_to_bool(
                env.get(f"{ENV_PREFIX}SYNC_ON_START"), base.sync_on_session_start
            ),
            source_dirs=tuple(source_dirs) if source_dirs else base.source_dirs,
        )
        if base_dir is None:
            return config
        return replace(
            config,
            db_path=config.resolve_db_path(base_dir),
            source_dirs=tuple(config.resolve_source_dirs(base_dir)),
        )


@dataclass(frozen=True, slots=True)
class SearchTuning:
    """Knobs for the staleness, decay and rerank stages of a search."""

    stale_reindex_budget_ms: float = 250.0
    stale_scan_ttl_ms: float = 5000.0
    decay_enabled: bool = True
    half_life_days: float = 45.0
    temporal_half_life_days: float = 21.0
    evergreen_half_life_days: float = 180.0
    min_multiplier: float = 0.35
    temporal_terms: tuple[str, ...] = DEFAULT_TEMPORAL_TERMS
    evergreen_markers: tuple[str, ...] = DEFAULT_EVERGREEN_MARKERS
    mmr_enabled: bool = True
    mmr_lambda: float = 0.72
    source_penalty_weight: float = 0.12
    max_per_source_soft: int = 2

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "SearchTuning":
        env = os.environ if env is None else env
        base = cls()
        inf = float("inf")
        temporal_terms = _split_csv(env.get(f"{ENV_PREFIX}TEMPORAL_TERMS"))
        evergreen_markers = _split_csv(env.get(f"{ENV_PREFIX}EVERGREEN_MARKERS"))
        return cls(
            stale_reindex_budget_ms=_to_float(
                env.get(f"{ENV_PREFIX}STALE_REINDEX_BUDGET_MS"),
                base.stale_reindex_budget_ms,
                0.0,
                inf,
            ),
            stale_scan_ttl_ms=_to_float(
                env.get(f"{ENV_PREFIX}STALE_SCAN_TTL_MS"), base.stale_scan_ttl_ms, 0.0, inf
            ),
            decay_enabled=_to_bool(env.get(f"{ENV_PREFIX}DECAY_ENABLED"), base.decay_enabled),
            half_life_days=_to_float(
                env.get(f"{ENV_PREFIX}DECAY_HALF_LIFE_DAYS"), base.half_life_days, 0.01, inf
            ),
            temporal_half_life_days=_to_float(
                env.get(f"{ENV_PREFIX}DECAY_TEMPORAL_HALF_LIFE_DAYS"),
                base.temporal_half_life_days,
                0.01,
                inf,
            ),
            evergreen_half_life_days=_to_float(
                env.get(f"{ENV_PREFIX}DECAY_EVERGREEN_HALF_LIFE_DAYS"),
                base.evergreen_half_life_days,
                0.01,
                inf,
            ),
            min_multiplier=_to_float(
                env.get(f"{ENV_PREFIX}DECAY_MIN_MULTIPLIER"), base.min_multiplier, 0.0, 1.0
            ),
            temporal_terms=tuple(term.lower() for term in temporal_terms)
            or base.temporal_terms,
            evergreen_markers=tuple(marker.lower() for marker in evergreen_markers)
            or base.evergreen_markers,
            mmr_enabled=_to_bool(env.get(f"{ENV_PREFIX}MMR_ENABLED"), base.mmr_enabled),
            mmr_lambda=_to_float(env.get(f"{ENV_PREFIX}MMR_LAMBDA"), base.mmr_lambda, 0.0, 1.0),
            source_penalty_weight=_to_float(
                env.get(f"{ENV_PREFIX}MMR_SOURCE_PENALTY"), base.source_penalty_weight, 0.0, inf
            ),
            max_per_source_soft=_to_int(
                env.get(f"{ENV_PREFIX}MMR_MAX_PER_SOURCE_SOFT"), base.max_per_source_soft, 1, 1_000
            ),
        )
