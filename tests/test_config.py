"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from memrecall.config import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_TEMPORAL_TERMS,
    MemoryConfig,
    SearchTuning,
)


class TestMemoryConfig:
    """Test MemoryConfig defaults and env loading."""

    def test_defaults(self) -> None:
        config = MemoryConfig()
        assert config.db_path == Path(".agent") / "memory.db"
        assert config.embedding_provider == "openai"
        assert config.embedding_model == DEFAULT_EMBEDDING_MODEL
        assert config.chunk_size == 400
        assert config.chunk_overlap == 80
        assert config.hybrid_vector_weight == pytest.approx(0.7)
        assert config.hybrid_bm25_weight == pytest.approx(0.3)
        assert config.top_k == 5
        assert config.sync_on_session_start is True
        assert config.source_dirs == (Path("memory"),)

    def test_frozen(self) -> None:
        """Config instances are immutable."""
        config = MemoryConfig()
        with pytest.raises(AttributeError):
            config.top_k = 10  # type: ignore[misc]

    def test_from_empty_env(self) -> None:
        assert MemoryConfig.from_env({}) == MemoryConfig()

    def test_from_env_overrides(self) -> None:
        env = {
            "MEMRECALL_DB_PATH": "/data/mem.db",
            "MEMRECALL_EMBEDDING_PROVIDER": "LOCAL",
            "MEMRECALL_CHUNK_SIZE": "600",
            "MEMRECALL_CHUNK_OVERLAP": "50",
            "MEMRECALL_VECTOR_WEIGHT": "0.5",
            "MEMRECALL_BM25_WEIGHT": "0.5",
            "MEMRECALL_TOP_K": "8",
            "MEMRECALL_SYNC_ON_START": "off",
            "MEMRECALL_SOURCE_DIRS": "notes, journal",
            "OPENAI_API_KEY": "sk-test",
        }
        config = MemoryConfig.from_env(env)

        assert config.db_path == Path("/data/mem.db")
        assert config.embedding_provider == "local"
        assert config.chunk_size == 600
        assert config.chunk_overlap == 50
        assert config.hybrid_vector_weight == pytest.approx(0.5)
        assert config.top_k == 8
        assert config.sync_on_session_start is False
        assert config.source_dirs == (Path("notes"), Path("journal"))
        assert config.embedding_api_key == "sk-test"

    def test_invalid_values_fall_back(self) -> None:
        env = {
            "MEMRECALL_EMBEDDING_PROVIDER": "cohere",
            "MEMRECALL_CHUNK_SIZE": "lots",
            "MEMRECALL_SYNC_ON_START": "maybe",
            "MEMRECALL_VECTOR_WEIGHT": "nan",
        }
        config = MemoryConfig.from_env(env)

        assert config.embedding_provider == "openai"
        assert config.chunk_size == 400
        assert config.sync_on_session_start is True
        assert config.hybrid_vector_weight == pytest.approx(0.7)

    def test_values_are_clamped(self) -> None:
        config = MemoryConfig.from_env(
            {"MEMRECALL_TOP_K": "0", "MEMRECALL_BM25_WEIGHT": "3.5"}
        )
        assert config.top_k == 1
        assert config.hybrid_bm25_weight == pytest.approx(1.0)

    def test_base_dir_resolves_relative_paths(self, tmp_path: Path) -> None:
        config = MemoryConfig.from_env({}, base_dir=tmp_path)

        assert config.db_path == tmp_path / ".agent" / "memory.db"
        assert config.source_dirs == ((tmp_path / "memory").resolve(),)

    def test_resolve_keeps_absolute_db_path(self, tmp_path: Path) -> None:
        config = MemoryConfig(db_path=tmp_path / "abs.db")
        assert config.resolve_db_path(Path("/elsewhere")) == tmp_path / "abs.db"


class TestSearchTuning:
    """Test SearchTuning defaults and env loading."""

    def test_defaults(self) -> None:
        tuning = SearchTuning()
        assert tuning.stale_reindex_budget_ms == 250.0
        assert tuning.stale_scan_ttl_ms == 5000.0
        assert tuning.half_life_days == 45.0
        assert tuning.temporal_half_life_days == 21.0
        assert tuning.evergreen_half_life_days == 180.0
        assert tuning.min_multiplier == pytest.approx(0.35)
        assert tuning.mmr_lambda == pytest.approx(0.72)
        assert tuning.source_penalty_weight == pytest.approx(0.12)
        assert tuning.max_per_source_soft == 2
        assert tuning.temporal_terms == DEFAULT_TEMPORAL_TERMS

    def test_from_env(self) -> None:
        tuning = SearchTuning.from_env(
            {
                "MEMRECALL_STALE_REINDEX_BUDGET_MS": "0",
                "MEMRECALL_DECAY_ENABLED": "false",
                "MEMRECALL_DECAY_MIN_MULTIPLIER": "1.7",
                "MEMRECALL_MMR_LAMBDA": "1",
                "MEMRECALL_TEMPORAL_TERMS": "Breaking, this sprint",
            }
        )
        assert tuning.stale_reindex_budget_ms == 0.0
        assert tuning.decay_enabled is False
        assert tuning.min_multiplier == pytest.approx(1.0)
        assert tuning.mmr_lambda == pytest.approx(1.0)
        assert tuning.temporal_terms == ("breaking", "this sprint")

    def test_from_empty_env(self) -> None:
        assert SearchTuning.from_env({}) == SearchTuning()
