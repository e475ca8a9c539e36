"""Classify text into named clusters by embedding similarity."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from notesearch.embedding.cache import EmbeddingCache, cluster_content_hash
from notesearch.embedding.encoder import Embedder, cosine_similarity

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ValueCluster:
    name: str
    values: List[str] = field(default_factory=list)

    @property
    def version(self) -> str:
        return cluster_content_hash(self.name, self.values)


class EmbeddingSimilarityClassifier:
    """Returns the cluster whose values are most similar to the input text.

    Cluster embeddings come from :class:`EmbeddingCache`, so they are only
    recomputed when a cluster's values change. Clusters that were removed from
    the configuration are dropped from the cache on first use.
    """

    def __init__(
        self,
        cache: EmbeddingCache,
        embedder: Embedder,
        clusters: Sequence[ValueCluster],
        *,
        model_name: str,
        similarity_threshold: float = 0.8,
    ) -> None:
        self.cache = cache
        self.embedder = embedder
        self.clusters = list(clusters)
        self.model_name = model_name
        self.similarity_threshold = similarity_threshold
        self._vectors: Optional[Dict[str, np.ndarray]] = None

    def remove_stale_clusters(self) -> List[str]:
        current = {cluster.name for cluster in self.clusters}
        stale = [
            entry.cluster_name
            for entry in self.cache.get_all_cluster_versions(self.model_name)
            if entry.cluster_name not in current
        ]
        for name in stale:
            self.cache.remove_cluster(self.model_name, name)
            LOGGER.info("Removed embeddings for deleted cluster %s", name)
        return stale

    async def load(self) -> Dict[str, np.ndarray]:
        if self._vectors is None:
            self.remove_stale_clusters()
            vectors: Dict[str, np.ndarray] = {}
            for cluster in self.clusters:
                vectors[cluster.name] = await self.cache.get_or_compute(
                    self.model_name, cluster.name, cluster.version, cluster.values
                )
            self._vectors = vectors
        return self._vectors

    async def classify(self, text: str) -> Optional[str]:
        vectors = await self.load()
        query = (await asyncio.to_thread(self.embedder.embed, [text]))[0]

        best_name: Optional[str] = None
        best_score = 0.0
        for name, matrix in vectors.items():
            if matrix.size == 0:
                continue
            score = float(np.max(cosine_similarity(query, matrix)))
            if score >= self.similarity_threshold and (best_name is None or score > best_score):
                best_name, best_score = name, score
        LOGGER.debug("Classified %r as %s (%.3f)", text, best_name, best_score)
        return best_name
