"""Embedding providers: remote, local model and local hash fallback."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple

import numpy as np

from memrecall.config import DEFAULT_EMBEDDING_MODEL
from memrecall.utils.text import tokenize

DEFAULT_SENTENCE_MODEL = "sentence-transformers/all-mpnet-base-v2"
LOCAL_HASH_DIMENSION = 256

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    name: str

    def embed(self, text: str) -> np.ndarray:
        """Return one float32 vector for ``text``."""

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Return one float32 row per input text."""


class EmbeddingCache(Protocol):
    def get_cached_embeddings(self, keys: Iterable[str]) -> Dict[str, np.ndarray]: ...

    def put_cached_embeddings(
        self, entries: Iterable[Tuple[str, np.ndarray]], *, provider: str, model: str
    ) -> None: ...


def serialize_embedding(vector: np.ndarray | Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="float32").tobytes()


def deserialize_embedding(raw: bytes | None) -> np.ndarray:
    if not raw:
        return np.zeros(0, dtype="float32")
    return np.frombuffer(raw, dtype="float32")


def normalize(vector: np.ndarray | Sequence[float]) -> np.ndarray:
    values = np.nan_to_num(np.asarray(vector, dtype="float32"))
    norm = float(np.linalg.norm(values))
    if norm <= 1e-12:
        return values
    return values / norm


def build_embedding_hash(provider: str, model: str, text: str) -> str:
    return hashlib.sha256(f"{provider}:{model}:{text}".encode("utf-8")).hexdigest()[:16]


class LocalHashEmbeddings:
    """Deterministic bag-of-words feature hashing; needs no model and never fails."""

    name = "local"

    def __init__(self, dimension: int = LOCAL_HASH_DIMENSION) -> None:
        self.dimension = max(64, int(dimension))

    def embed(self, text: str) -> np.ndarray:
        bucket = np.zeros(self.dimension, dtype="float32")
        for token in tokenize(text):
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self.dimension
            bucket[idx] += -1.0 if digest[4] % 2 else 1.0
        return normalize(bucket)

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimension), dtype="float32")
        return np.vstack([self.embed(text) for text in texts])


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_SENTENCE_MODEL
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None


class SentenceTransformerEmbeddings:
    """Thin wrapper around `SentenceTransformer` for query and document embeddings."""

    name = "sentence-transformers"

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        from sentence_transformers import SentenceTransformer

        self.config = config or EmbeddingConfig()
        self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded sentence-transformers model %s (dim=%d)", self.config.model_name, self.dimension
        )

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


class OpenAIEmbeddings:
    """OpenAI embeddings API client backed by a persistent embedding cache.

    Only texts missing from the cache are sent to the API. Vectors are
    L2-normalized before they are cached or returned.
    """

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_EMBEDDING_MODEL,
        cache: EmbeddingCache | None = None,
        client=None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._cache = cache
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        if not self._api_key and self._client is None:
            raise RuntimeError("OpenAI embedding API key is required for provider=openai.")

        texts = list(texts)
        keys = [build_embedding_hash(self.name, self.model, text) for text in texts]
        cached = self._cache.get_cached_embeddings(keys) if self._cache is not None else {}

        results: List[np.ndarray | None] = [cached.get(key) for key in keys]
        misses = [idx for idx, vector in enumerate(results) if vector is None]
        if misses:
            response = self._get_client().embeddings.create(
                model=self.model, input=[texts[idx] for idx in misses]
            )
            data = list(response.data)
            if len(data) != len(misses):
                raise RuntimeError(
                    f"OpenAI returned {len(data)} embeddings for {len(misses)} inputs"
                )
            fresh = []
            for idx, item in zip(misses, data):
                vector = normalize(item.embedding)
                results[idx] = vector
                fresh.append((keys[idx], vector))
            if self._cache is not None:
                self._cache.put_cached_embeddings(fresh, provider=self.name, model=self.model)
            logger.debug("Embedded %d texts via OpenAI (%d cached)", len(misses), len(cached))

        if not results:
            return np.zeros((0, 0), dtype="float32")
        return np.vstack(results)


def create_embedding_provider(
    provider: str,
    *,
    model: str = DEFAULT_EMBEDDING_MODEL,
    api_key: str = "",
    cache: EmbeddingCache | None = None,
) -> EmbeddingProvider:
    """Build the configured primary provider."""
    if provider == "local":
        return LocalHashEmbeddings()
    if provider == "sentence-transformers":
        model_name = DEFAULT_SENTENCE_MODEL if model == DEFAULT_EMBEDDING_MODEL else model
        return SentenceTransformerEmbeddings(EmbeddingConfig(model_name=model_name))
    return OpenAIEmbeddings(api_key=api_key, model=model, cache=cache)
