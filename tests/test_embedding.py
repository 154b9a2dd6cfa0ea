"""Tests for embedding providers."""

from __future__ import annotations

import sys
from types import ModuleType, SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from memrecall.embedding.encoder import (
    DEFAULT_SENTENCE_MODEL,
    LocalHashEmbeddings,
    OpenAIEmbeddings,
    SentenceTransformerEmbeddings,
    build_embedding_hash,
    create_embedding_provider,
    deserialize_embedding,
    normalize,
    serialize_embedding,
)
from memrecall.index.storage import SQLiteChunkStore
from memrecall.search.hybrid import cosine_similarity


def _openai_response(*vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=list(v)) for v in vectors])


class TestSerialization:
    """Test embedding (de)serialization helpers."""

    def test_round_trip(self) -> None:
        vector = np.array([0.1, -0.2, 0.3], dtype="float32")
        np.testing.assert_array_equal(deserialize_embedding(serialize_embedding(vector)), vector)

    def test_empty_blob(self) -> None:
        assert deserialize_embedding(b"").size == 0
        assert deserialize_embedding(None).size == 0

    def test_normalize(self) -> None:
        np.testing.assert_allclose(normalize([3.0, 4.0]), [0.6, 0.8], rtol=1e-6)

    def test_normalize_zero_vector(self) -> None:
        np.testing.assert_array_equal(normalize([0.0, 0.0]), [0.0, 0.0])

    def test_hash_depends_on_model(self) -> None:
        assert build_embedding_hash("openai", "a", "text") != build_embedding_hash(
            "openai", "b", "text"
        )


class TestLocalHashEmbeddings:
    """Test the deterministic local fallback."""

    def test_shape_and_norm(self) -> None:
        vector = LocalHashEmbeddings().embed("my timezone is Europe/Berlin")
        assert vector.shape == (256,)
        assert vector.dtype == np.float32
        assert float(np.linalg.norm(vector)) == pytest.approx(1.0, rel=1e-5)

    def test_deterministic(self) -> None:
        provider = LocalHashEmbeddings()
        np.testing.assert_array_equal(provider.embed("same text"), provider.embed("same text"))

    def test_related_text_scores_higher(self) -> None:
        provider = LocalHashEmbeddings()
        query = provider.embed("atlas deployment region")
        related = provider.embed("the atlas deployment region is us-east-2")
        unrelated = provider.embed("grocery list: apples and oranges")

        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)

    def test_empty_text(self) -> None:
        vector = LocalHashEmbeddings().embed("")
        assert not vector.any()

    def test_batch(self) -> None:
        provider = LocalHashEmbeddings(dimension=128)
        batch = provider.embed_batch(["a b", "c d"])
        assert batch.shape == (2, 128)
        assert provider.embed_batch([]).shape == (0, 128)


class TestOpenAIEmbeddings:
    """Test the OpenAI provider with a fake client."""

    def test_requires_api_key(self) -> None:
        provider = OpenAIEmbeddings(api_key="")
        with pytest.raises(RuntimeError, match="API key"):
            provider.embed("hello")

    def test_embeds_and_normalizes(self) -> None:
        client = MagicMock()
        client.embeddings.create.return_value = _openai_response([3.0, 4.0], [0.0, 2.0])
        provider = OpenAIEmbeddings(api_key="sk-test", model="m", client=client)

        batch = provider.embed_batch(["first", "second"])

        client.embeddings.create.assert_called_once_with(model="m", input=["first", "second"])
        np.testing.assert_allclose(batch, [[0.6, 0.8], [0.0, 1.0]], rtol=1e-6)

    def test_only_cache_misses_are_sent(self, store: SQLiteChunkStore) -> None:
        client = MagicMock()
        client.embeddings.create.return_value = _openai_response([1.0, 0.0])
        provider = OpenAIEmbeddings(api_key="sk-test", model="m", cache=store, client=client)
        provider.embed_batch(["cached"])

        client.embeddings.create.reset_mock()
        client.embeddings.create.return_value = _openai_response([0.0, 1.0])
        batch = provider.embed_batch(["cached", "fresh"])

        client.embeddings.create.assert_called_once_with(model="m", input=["fresh"])
        np.testing.assert_allclose(batch, [[1.0, 0.0], [0.0, 1.0]])

    def test_fully_cached_batch_skips_api(self, store: SQLiteChunkStore) -> None:
        client = MagicMock()
        client.embeddings.create.return_value = _openai_response([1.0, 0.0])
        provider = OpenAIEmbeddings(api_key="sk-test", model="m", cache=store, client=client)
        provider.embed("again")
        provider.embed("again")

        assert client.embeddings.create.call_count == 1

    def test_count_mismatch(self) -> None:
        client = MagicMock()
        client.embeddings.create.return_value = _openai_response([1.0, 0.0])
        provider = OpenAIEmbeddings(api_key="sk-test", client=client)

        with pytest.raises(RuntimeError, match="returned 1 embeddings for 2 inputs"):
            provider.embed_batch(["a", "b"])

    def test_client_errors_propagate(self) -> None:
        client = MagicMock()
        client.embeddings.create.side_effect = ConnectionError("offline")
        provider = OpenAIEmbeddings(api_key="sk-test", client=client)

        with pytest.raises(ConnectionError):
            provider.embed("hello")


class TestSentenceTransformerEmbeddings:
    """Test the sentence-transformers wrapper with a stubbed model."""

    @pytest.fixture
    def fake_module(self):
        model = MagicMock()
        model.get_sentence_embedding_dimension.return_value = 3
        model.encode.return_value = np.array([[1.0, 0.0, 0.0]], dtype="float64")
        module = ModuleType("sentence_transformers")
        module.SentenceTransformer = MagicMock(return_value=model)  # type: ignore[attr-defined]
        with patch.dict(sys.modules, {"sentence_transformers": module}):
            yield module, model

    def test_embed(self, fake_module) -> None:
        module, model = fake_module
        provider = SentenceTransformerEmbeddings()

        vector = provider.embed("hello")

        module.SentenceTransformer.assert_called_once_with(DEFAULT_SENTENCE_MODEL, device=None)
        assert vector.dtype == np.float32
        assert provider.dimension == 3
        assert model.encode.call_args.kwargs["normalize_embeddings"] is True

    def test_empty_batch(self, fake_module) -> None:
        _, model = fake_module
        provider = SentenceTransformerEmbeddings()

        assert provider.embed_batch([]).shape == (0, 3)
        model.encode.assert_not_called()


class TestCreateEmbeddingProvider:
    """Test the provider factory."""

    def test_local(self) -> None:
        assert isinstance(create_embedding_provider("local"), LocalHashEmbeddings)

    def test_openai(self, store: SQLiteChunkStore) -> None:
        provider = create_embedding_provider("openai", model="m", api_key="sk", cache=store)
        assert isinstance(provider, OpenAIEmbeddings)
        assert provider.model == "m"

    def test_sentence_transformers_default_model(self) -> None:
        with patch("memrecall.embedding.encoder.SentenceTransformerEmbeddings") as mock_cls:
            create_embedding_provider("sentence-transformers")
        config = mock_cls.call_args.args[0]
        assert config.model_name == DEFAULT_SENTENCE_MODEL
