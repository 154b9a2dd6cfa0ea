"""Shared fixtures for memrecall tests."""

from __future__ import annotations

import time
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pytest

from memrecall.config import MemoryConfig, SearchTuning
from memrecall.embedding.encoder import LocalHashEmbeddings
from memrecall.index.storage import SQLiteChunkStore
from memrecall.manager import MemoryIndexManager


class CountingEmbeddings(LocalHashEmbeddings):
    """Local hash embeddings that count calls and can be told to fail or stall."""

    name = "counting"

    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        super().__init__()
        self.fail = fail
        self.delay = delay
        self.batch_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.query_calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return super().embed(text)

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        self.batch_calls.append(list(texts))
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return super().embed_batch(texts)


@pytest.fixture
def memory_dir(tmp_path: Path) -> Path:
    path = tmp_path / "memory"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, memory_dir: Path) -> MemoryConfig:
    return MemoryConfig(
        db_path=tmp_path / "memory.db",
        embedding_provider="local",
        source_dirs=(memory_dir,),
    )


@pytest.fixture
def tuning() -> SearchTuning:
    return SearchTuning()


@pytest.fixture
def store(tmp_path: Path):
    chunk_store = SQLiteChunkStore(tmp_path / "chunks.db")
    yield chunk_store
    chunk_store.close()


@pytest.fixture
def primary() -> CountingEmbeddings:
    return CountingEmbeddings()


@pytest.fixture
def manager(config: MemoryConfig, tuning: SearchTuning, primary: CountingEmbeddings):
    mgr = MemoryIndexManager(config, provider=primary, tuning=tuning)
    yield mgr
    mgr.store.close()
