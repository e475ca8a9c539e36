"""Tests for the embedding model wrapper and cluster embedding cache."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from notesearch.embedding.cache import EmbeddingCache, cluster_content_hash
from notesearch.embedding.encoder import EmbeddingConfig, EmbeddingModel, cosine_similarity
from notesearch.errors import EmbeddingComputeFailure


def _embedder(dimension: int = 3) -> MagicMock:
    embedder = MagicMock()
    embedder.embed.side_effect = lambda texts: np.ones((len(texts), dimension), dtype="float64")
    return embedder


@pytest.fixture
def cache(tmp_path: Path):
    cache = EmbeddingCache(tmp_path / "cache.db", _embedder())
    yield cache
    cache.close()


class TestEmbeddingModel:
    """Tests for EmbeddingModel."""

    @patch("notesearch.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 4
        mock_st.return_value.encode.return_value = np.zeros((2, 4), dtype="float64")

        model = EmbeddingModel(EmbeddingConfig(model_name="tiny", device="cpu"))
        vectors = model.embed(["a", "b"])

        mock_st.assert_called_once_with("tiny", device="cpu")
        assert model.dimension == 4
        assert model.model_name == "tiny"
        assert vectors.dtype == np.float32
        kwargs = mock_st.return_value.encode.call_args[1]
        assert kwargs["normalize_embeddings"] is True
        assert kwargs["show_progress_bar"] is False

    @patch("notesearch.embedding.encoder.SentenceTransformer")
    def test_embed_query(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 2
        mock_st.return_value.encode.return_value = np.array([[1.0, 0.0]])

        vector = EmbeddingModel().embed_query("hello")

        assert vector.shape == (2,)


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_scores(self) -> None:
        scores = cosine_similarity(np.array([1.0, 0.0]), np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]]))
        assert scores == pytest.approx([1.0, 0.0, 2 ** -0.5], abs=1e-6)

    def test_empty_matrix(self) -> None:
        assert cosine_similarity(np.array([1.0]), np.zeros((0, 1))).shape == (0,)

    def test_zero_vector(self) -> None:
        assert cosine_similarity(np.zeros(2), np.array([[1.0, 0.0]])) == pytest.approx([0.0])


class TestClusterContentHash:
    """Tests for cluster_content_hash."""

    def test_order_independent(self) -> None:
        assert cluster_content_hash("c", ["a", "b"]) == cluster_content_hash("c", ["b", "a"])

    def test_changes_with_content(self) -> None:
        assert cluster_content_hash("c", ["a"]) != cluster_content_hash("c", ["a", "b"])
        assert cluster_content_hash("c", ["a"]) != cluster_content_hash("d", ["a"])


class TestEmbeddingCache:
    """Tests for EmbeddingCache."""

    def test_computes_once(self, cache: EmbeddingCache) -> None:
        first = asyncio.run(cache.get_or_compute("m", "greetings", "v1", ["hi", "hello"]))
        second = asyncio.run(cache.get_or_compute("m", "greetings", "v1", ["hi", "hello"]))

        assert first.shape == (2, 3)
        assert first.dtype == np.float32
        np.testing.assert_array_equal(first, second)
        assert cache.embedder.embed.call_count == 1
        assert cache.get_cluster_version("m", "greetings") == "v1"

    def test_recomputes_on_new_version(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("m", "greetings", "v1", ["hi"]))
        vectors = asyncio.run(cache.get_or_compute("m", "greetings", "v2", ["hi", "hey", "yo"]))

        assert vectors.shape == (3, 3)
        assert cache.embedder.embed.call_count == 2
        assert [entry.value_text for entry in cache.get_entries("m", "greetings")] == ["hi", "hey", "yo"]
        assert cache.get_cluster_version("m", "greetings") == "v2"

    def test_models_are_separate(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("m1", "c", "v1", ["x"]))
        asyncio.run(cache.get_or_compute("m2", "c", "v1", ["x"]))

        assert cache.embedder.embed.call_count == 2
        assert cache.has_embeddings_for_model("m1")
        assert cache.has_embeddings_for_model("m2")

    def test_failure_leaves_cache_untouched(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("m", "c", "v1", ["a"]))
        cache.embedder.embed.side_effect = RuntimeError("model crashed")

        with pytest.raises(EmbeddingComputeFailure):
            asyncio.run(cache.get_or_compute("m", "c", "v2", ["a", "b"]))

        assert cache.get_cluster_version("m", "c") == "v1"
        assert len(cache.get_entries("m", "c")) == 1

    def test_cancelled_computation_writes_nothing(self, tmp_path: Path) -> None:
        release = threading.Event()

        def slow_embed(texts):
            release.wait(5)
            return np.ones((len(texts), 3))

        embedder = MagicMock()
        embedder.embed.side_effect = slow_embed
        cache = EmbeddingCache(tmp_path / "cache.db", embedder)

        async def abandon() -> None:
            try:
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        cache.get_or_compute("m", "c", "v1", ["a", "b"]), timeout=0.05
                    )
            finally:
                release.set()

        asyncio.run(abandon())

        assert cache.get_cluster_version("m", "c") is None
        assert cache.get_entries("m", "c") == []

        vectors = asyncio.run(cache.get_or_compute("m", "c", "v1", ["a", "b"]))
        assert vectors.shape == (2, 3)
        assert cache.get_cluster_version("m", "c") == "v1"
        cache.close()

    def test_wrong_shape_rejected(self, cache: EmbeddingCache) -> None:
        cache.embedder.embed.side_effect = lambda texts: np.ones((1, 3))

        with pytest.raises(EmbeddingComputeFailure, match="Expected 2 embeddings"):
            asyncio.run(cache.get_or_compute("m", "c", "v1", ["a", "b"]))
        assert cache.get_cluster_version("m", "c") is None

    def test_no_embedder(self, tmp_path: Path) -> None:
        cache = EmbeddingCache(tmp_path / "bare.db")
        with pytest.raises(EmbeddingComputeFailure):
            asyncio.run(cache.get_or_compute("m", "c", "v1", ["a"]))
        cache.close()

    def test_empty_cluster(self, cache: EmbeddingCache) -> None:
        vectors = asyncio.run(cache.get_or_compute("m", "empty", "v0", []))

        assert vectors.shape == (0, 0)
        assert cache.get_cluster_version("m", "empty") == "v0"
        cache.embedder.embed.assert_not_called()

    def test_concurrent_requests_compute_once(self, cache: EmbeddingCache) -> None:
        async def run() -> list:
            return await asyncio.gather(
                *(cache.get_or_compute("m", "c", "v1", ["a", "b"]) for _ in range(3))
            )

        results = asyncio.run(run())

        assert cache.embedder.embed.call_count == 1
        assert all(result.shape == (2, 3) for result in results)

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        db_path = tmp_path / "cache.db"
        first = EmbeddingCache(db_path, _embedder())
        asyncio.run(first.get_or_compute("m", "c", "v1", ["a"]))
        first.close()

        embedder = _embedder()
        second = EmbeddingCache(db_path, embedder)
        vectors = asyncio.run(second.get_or_compute("m", "c", "v1", ["a"]))
        second.close()

        assert vectors.shape == (1, 3)
        embedder.embed.assert_not_called()

    def test_remove_cluster(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("m", "c", "v1", ["a"]))
        cache.remove_cluster("m", "c")

        assert cache.get_entries("m", "c") == []
        assert cache.get_cluster_version("m", "c") is None

    def test_clear_embeddings_for_model(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("old", "c1", "v1", ["a", "b"]))
        asyncio.run(cache.get_or_compute("old", "c2", "v1", ["c"]))
        asyncio.run(cache.get_or_compute("new", "c1", "v1", ["a"]))

        assert cache.clear_embeddings_for_model("old") == 3
        assert not cache.has_embeddings_for_model("old")
        assert [entry.model_name for entry in cache.get_all_cluster_versions()] == ["new"]

    def test_cluster_versions_filtered_by_model(self, cache: EmbeddingCache) -> None:
        asyncio.run(cache.get_or_compute("m", "b", "v1", ["x"]))
        asyncio.run(cache.get_or_compute("m", "a", "v2", ["y"]))
        asyncio.run(cache.get_or_compute("other", "z", "v3", ["z"]))

        versions = cache.get_all_cluster_versions("m")

        assert [(v.cluster_name, v.version) for v in versions] == [("a", "v2"), ("b", "v1")]
