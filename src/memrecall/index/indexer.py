"""Markdown indexing pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Sequence, Tuple

import numpy as np

from memrecall.diagnostics import log_degraded
from memrecall.embedding.encoder import EmbeddingProvider
from memrecall.index.storage import SQLiteChunkStore
from memrecall.models import SearchMode
from memrecall.utils.files import hash_text, iter_markdown_paths, read_text_or_none
from memrecall.utils.text import chunk_markdown

LOGGER = logging.getLogger(__name__)


def find_markdown(paths: Sequence[Path]) -> list[Path]:
    """Find all markdown files under the given paths."""
    return list(iter_markdown_paths(paths))


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    removed: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        elif status == "removed":
            self.removed += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Coordinates chunking, embedding and atomic per-source replacement.

    ``file_hashes`` remembers the last indexed content hash per absolute path
    so unchanged files are skipped without embedding or writing.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        fallback_provider: EmbeddingProvider,
        store: SQLiteChunkStore,
        *,
        chunk_size: int = 400,
        chunk_overlap: int = 80,
        on_write: Callable[[str], None] | None = None,
    ) -> None:
        self.provider = provider
        self.fallback_provider = fallback_provider
        self.store = store
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.on_write = on_write
        self.file_hashes: Dict[str, str] = {}
        self.fallback_count = 0

    async def embed_batch_with_fallback(
        self, texts: Sequence[str]
    ) -> Tuple[np.ndarray, SearchMode]:
        """Embed with the primary provider, retrying the whole batch on the fallback."""
        try:
            vectors = await asyncio.to_thread(self.provider.embed_batch, list(texts))
            return _checked(vectors, len(texts)), "hybrid"
        except Exception as exc:
            self.fallback_count += 1
            log_degraded(
                LOGGER,
                phase="index",
                reason="index-embedding-failed",
                mode="fallback-local",
                detail=type(exc).__name__,
            )
        vectors = await asyncio.to_thread(self.fallback_provider.embed_batch, list(texts))
        return _checked(vectors, len(texts)), "fallback-local"

    async def index_file(self, path: Path | str) -> str:
        """Index one file; returns inserted, updated, skipped, removed or failed."""
        abs_path = Path(path).resolve()
        source = str(abs_path)

        content = read_text_or_none(abs_path)
        if content is None:
            self.file_hashes.pop(source, None)
            removed = self.store.delete_source(source)
            if removed:
                LOGGER.info("Source %s is unreadable, dropped %d chunks", source, removed)
                self._notify(source)
                return "removed"
            LOGGER.debug("Source %s is unreadable, nothing to index", source)
            return "skipped"

        file_hash = hash_text(content)
        if self.file_hashes.get(source) == file_hash:
            return "skipped"

        chunks = chunk_markdown(content, source, self.chunk_size, self.chunk_overlap)
        embeddings: Sequence[np.ndarray] = []
        if chunks:
            try:
                embeddings, _ = await self.embed_batch_with_fallback(
                    [chunk.content for chunk in chunks]
                )
            except Exception as exc:
                LOGGER.error("Failed to embed %s with every provider: %s", source, exc)
                return "failed"

        existed = self.store.count_chunks(source) > 0
        self.store.replace_source_chunks(source, chunks, list(embeddings))
        self.file_hashes[source] = file_hash
        self._notify(source)
        LOGGER.debug("Indexed %s (%d chunks)", source, len(chunks))
        return "updated" if existed else "inserted"

    async def index_paths(self, paths: Sequence[Path]) -> IndexStats:
        """Index every markdown file found under ``paths``, one at a time."""
        stats = IndexStats()
        for path in find_markdown(paths):
            try:
                status = await self.index_file(path)
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                status = "failed"
            stats.increment(status, path)
        return stats

    async def index_directory(self, directory: Path | str) -> IndexStats:
        abs_dir = Path(directory).resolve()
        if not abs_dir.is_dir():
            LOGGER.warning("Source directory %s does not exist", abs_dir)
            return IndexStats()
        return await self.index_paths([abs_dir])

    def _notify(self, source: str) -> None:
        if self.on_write is not None:
            self.on_write(source)


def _checked(vectors: np.ndarray, expected: int) -> np.ndarray:
    rows = np.asarray(vectors, dtype="float32")
    if rows.ndim == 1 and expected == 0:
        rows = rows.reshape(0, 0)
    if rows.ndim != 2 or rows.shape[0] != expected:
        raise ValueError(f"Provider returned {rows.shape} for {expected} texts")
    return rows
