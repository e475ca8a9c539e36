"""Versioned SQLite cache of cluster embeddings."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from notesearch.embedding.encoder import Embedder
from notesearch.errors import EmbeddingComputeFailure
from notesearch.models import ClusterVersionEntry, EmbeddingEntry

LOGGER = logging.getLogger(__name__)


def cluster_content_hash(name: str, values: Iterable[str]) -> str:
    """Version of a cluster's content; independent of value order."""
    payload = json.dumps(
        {"name": name, "values": sorted(values)},
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """Embeddings keyed by (model, cluster) with one live version per key.

    A cluster's rows and its version are always replaced together in a single
    transaction, so readers never see rows from two content versions.
    """

    def __init__(
        self,
        db_path: Path,
        embedder: Embedder | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.embedder = embedder
        self._clock = clock
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
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
                CREATE TABLE IF NOT EXISTS embeddings (
                    id INTEGER PRIMARY KEY,
                    model_name TEXT NOT NULL,
                    cluster_name TEXT NOT NULL,
                    ordinal INTEGER NOT NULL,
                    value_text TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cluster_versions (
                    id INTEGER PRIMARY KEY,
                    model_name TEXT NOT NULL,
                    cluster_name TEXT NOT NULL,
                    version TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_embeddings_model_cluster
                    ON embeddings(model_name, cluster_name)
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_cluster_versions_model_cluster
                    ON cluster_versions(model_name, cluster_name)
                """
            )

    async def get_or_compute(
        self,
        model_name: str,
        cluster_name: str,
        content_hash: str,
        texts: Sequence[str],
    ) -> np.ndarray:
        """Cached embeddings when ``content_hash`` matches, otherwise recompute.

        Only one computation runs at a time per (model, cluster). A failed or
        cancelled computation leaves the cache as it was.
        """
        key = (model_name, cluster_name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if self.get_cluster_version(model_name, cluster_name) == content_hash:
                entries = self.get_entries(model_name, cluster_name)
                LOGGER.debug("Embedding cache hit for %s/%s", model_name, cluster_name)
                return _stack([entry.embedding for entry in entries])

            texts = list(texts)
            LOGGER.info(
                "Computing %d embeddings for cluster %s with %s", len(texts), cluster_name, model_name
            )
            vectors = await self._compute(texts)
            self._replace_cluster(model_name, cluster_name, content_hash, texts, vectors)
            return vectors

    async def _compute(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype="float32")
        if self.embedder is None:
            raise EmbeddingComputeFailure("No embedding model configured")
        try:
            vectors = await asyncio.to_thread(self.embedder.embed, texts)
        except Exception as exc:
            raise EmbeddingComputeFailure(f"Embedding computation failed: {exc}") from exc
        vectors = np.asarray(vectors, dtype="float32")
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise EmbeddingComputeFailure(
                f"Expected {len(texts)} embeddings, got array of shape {vectors.shape}"
            )
        return vectors

    def _replace_cluster(
        self,
        model_name: str,
        cluster_name: str,
        version: str,
        texts: Sequence[str],
        vectors: np.ndarray,
    ) -> None:
        now = self._clock()
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM embeddings WHERE model_name = ? AND cluster_name = ?",
                (model_name, cluster_name),
            )
            conn.executemany(
                """
                INSERT INTO embeddings(model_name, cluster_name, ordinal, value_text, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        model_name,
                        cluster_name,
                        ordinal,
                        text,
                        sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes()),
                        now,
                    )
                    for ordinal, (text, vector) in enumerate(zip(texts, vectors))
                ],
            )
            conn.execute(
                "DELETE FROM cluster_versions WHERE model_name = ? AND cluster_name = ?",
                (model_name, cluster_name),
            )
            conn.execute(
                """
                INSERT INTO cluster_versions(model_name, cluster_name, version, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (model_name, cluster_name, version, now),
            )

    def get_entries(self, model_name: str, cluster_name: str) -> List[EmbeddingEntry]:
        rows = self._conn.execute(
            """
            SELECT model_name, cluster_name, value_text, embedding, created_at
            FROM embeddings WHERE model_name = ? AND cluster_name = ?
            ORDER BY ordinal
            """,
            (model_name, cluster_name),
        ).fetchall()
        return [
            EmbeddingEntry(
                model_name=row["model_name"],
                cluster_name=row["cluster_name"],
                value_text=row["value_text"],
                embedding=np.frombuffer(row["embedding"], dtype="float32"),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def get_cluster_version(self, model_name: str, cluster_name: str) -> str | None:
        row = self._conn.execute(
            "SELECT version FROM cluster_versions WHERE model_name = ? AND cluster_name = ?",
            (model_name, cluster_name),
        ).fetchone()
        return row["version"] if row else None

    def get_all_cluster_versions(self, model_name: str | None = None) -> List[ClusterVersionEntry]:
        query = "SELECT model_name, cluster_name, version, updated_at FROM cluster_versions"
        params: tuple = ()
        if model_name is not None:
            query += " WHERE model_name = ?"
            params = (model_name,)
        rows = self._conn.execute(query + " ORDER BY model_name, cluster_name", params).fetchall()
        return [
            ClusterVersionEntry(
                model_name=row["model_name"],
                cluster_name=row["cluster_name"],
                version=row["version"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    def has_embeddings_for_model(self, model_name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM embeddings WHERE model_name = ? LIMIT 1", (model_name,)
        ).fetchone()
        return row is not None

    def remove_cluster(self, model_name: str, cluster_name: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM embeddings WHERE model_name = ? AND cluster_name = ?",
                (model_name, cluster_name),
            )
            conn.execute(
                "DELETE FROM cluster_versions WHERE model_name = ? AND cluster_name = ?",
                (model_name, cluster_name),
            )

    def clear_embeddings_for_model(self, model_name: str) -> int:
        """Drop every cluster of a retired model; returns the number of rows removed."""
        with self.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM embeddings WHERE model_name = ?", (model_name,)
            ).rowcount
            conn.execute("DELETE FROM cluster_versions WHERE model_name = ?", (model_name,))
        LOGGER.info("Cleared %d embeddings for model %s", removed, model_name)
        return removed


def _stack(vectors: List[np.ndarray]) -> np.ndarray:
    if not vectors:
        return np.zeros((0, 0), dtype="float32")
    return np.vstack(vectors)
