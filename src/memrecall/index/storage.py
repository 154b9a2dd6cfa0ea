"""SQLite chunk store with an embedding cache."""

from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from memrecall.embedding.encoder import deserialize_embedding, serialize_embedding
from memrecall.models import ChunkRecord, MemoryChunk
from memrecall.utils.files import hash_text


def now_ms() -> int:
    return int(time.time() * 1000)


class SQLiteChunkStore:
    """Persistence layer for memory chunks and cached embeddings.

    One connection is shared by the event loop and the embedding worker
    threads; every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    content_hash TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS embedding_cache (
                    content_hash TEXT PRIMARY KEY,
                    embedding BLOB NOT NULL,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )

    def replace_source_chunks(
        self,
        source: str,
        chunks: Sequence[ChunkRecord],
        embeddings: Sequence[np.ndarray],
        *,
        updated_at: int | None = None,
    ) -> int:
        """Atomically swap every row of ``source`` for ``chunks``."""
        if len(embeddings) != len(chunks):
            raise ValueError("Embeddings and chunks length mismatch")

        stamp = now_ms() if updated_at is None else updated_at
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks WHERE source = ?", (source,))
            for chunk, vector in zip(chunks, embeddings):
                conn.execute(
                    """
                    INSERT OR REPLACE INTO chunks(id, source, content, embedding, content_hash, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        source,
                        chunk.content,
                        serialize_embedding(vector),
                        hash_text(chunk.content),
                        stamp,
                    ),
                )
        return len(chunks)

    def delete_source(self, source: str) -> int:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM chunks WHERE source = ?", (source,)).rowcount

    def load_chunks(self) -> List[MemoryChunk]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, source, content, embedding, content_hash, updated_at FROM chunks"
            ).fetchall()
        return [
            MemoryChunk(
                id=row["id"],
                source=row["source"],
                content=row["content"],
                embedding=deserialize_embedding(row["embedding"]),
                content_hash=row["content_hash"],
                updated_at=int(row["updated_at"] or 0),
            )
            for row in rows
        ]

    def count_chunks(self, source: str | None = None) -> int:
        with self._lock:
            if source is None:
                row = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE source = ?", (source,)
                ).fetchone()
        return int(row[0])

    def source_for_chunk(self, chunk_id: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT source FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        return row["source"] if row else None

    def source_freshness(self) -> List[Tuple[str, int]]:
        """Return ``(source, max updated_at)`` for every indexed source."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT source, MAX(updated_at) AS updated_at FROM chunks GROUP BY source"
            ).fetchall()
        return [(row["source"], int(row["updated_at"] or 0)) for row in rows if row["source"]]

    def remove_missing_sources(self) -> int:
        """Remove chunks whose source files no longer exist."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT DISTINCT source FROM chunks").fetchall()
            missing = [row["source"] for row in rows if not Path(row["source"]).exists()]
            for source in missing:
                conn.execute("DELETE FROM chunks WHERE source = ?", (source,))
        return len(missing)

    def get_cached_embeddings(self, keys: Iterable[str]) -> Dict[str, np.ndarray]:
        found: Dict[str, np.ndarray] = {}
        with self._lock:
            for key in keys:
                row = self._conn.execute(
                    "SELECT embedding FROM embedding_cache WHERE content_hash = ?", (key,)
                ).fetchone()
                if row is not None:
                    found[key] = deserialize_embedding(row["embedding"])
        return found

    def put_cached_embeddings(
        self,
        entries: Iterable[Tuple[str, np.ndarray]],
        *,
        provider: str,
        model: str,
    ) -> None:
        stamp = now_ms()
        with self.transaction() as conn:
            for key, vector in entries:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO embedding_cache(content_hash, embedding, provider, model, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (key, serialize_embedding(vector), provider, model, stamp),
                )
