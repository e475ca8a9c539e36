"""Two-tier cache of LLM responses: exact text and similar text."""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Literal, Optional, Sequence

import numpy as np

from notesearch.embedding.encoder import Embedder, cosine_similarity
from notesearch.models import LLMCacheEntry

LOGGER = logging.getLogger(__name__)

# Commands whose answers depend on exact wording, so near matches are unsafe.
EXACT_MATCH_COMMANDS = frozenset(
    {"search", "move", "move_from_search_result", "copy", "delete", "calc", "image", "audio"}
)

DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_SIMILARITY_THRESHOLD = 0.9

_TABLES = {"exact": "exact_matches", "similarity": "similarity_matches"}

Scorer = Callable[[str, Sequence[str]], Sequence[float]]


def match_type_for(command_type: str) -> Literal["exact", "similarity"]:
    return "exact" if command_type in EXACT_MATCH_COMMANDS else "similarity"


class EmbeddingSimilarityScorer:
    """Cosine similarity between a query and candidate queries."""

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder

    def __call__(self, query: str, candidates: Sequence[str]) -> List[float]:
        if not candidates:
            return []
        vectors = np.asarray(self.embedder.embed([query, *candidates]), dtype="float32")
        return [float(score) for score in cosine_similarity(vectors[0], vectors[1:])]


class LLMResponseCache:
    """SQLite ledger of generated responses.

    Every response is kept in the exact tier, and in the similarity tier too
    unless its command type is exact-only. Entries unused for ``max_age_days``
    expire, and each tier keeps at most ``max_entries`` rows, evicting the least
    recently accessed first.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.max_age_days = max_age_days
        self.max_entries = max_entries
        self._clock = clock
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

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
            for table in _TABLES.values():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY,
                        query TEXT NOT NULL,
                        response TEXT NOT NULL,
                        command_type TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        last_accessed REAL NOT NULL
                    )
                    """
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_query ON {table}(command_type, query)"
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_last_accessed ON {table}(last_accessed)"
                )

    @staticmethod
    def _to_entry(
        row: sqlite3.Row,
        match_type: Literal["exact", "similarity"],
        score: float | None = None,
    ) -> LLMCacheEntry:
        return LLMCacheEntry(
            query=row["query"],
            response=row["response"],
            command_type=row["command_type"],
            created_at=row["created_at"],
            last_accessed=row["last_accessed"],
            match_type=match_type,
            similarity_score=score,
        )

    def _touch(self, table: str, row_id: int) -> float:
        now = self._clock()
        with self.transaction() as conn:
            conn.execute(f"UPDATE {table} SET last_accessed = ? WHERE id = ?", (now, row_id))
        return now

    def lookup(
        self,
        query: str,
        command_type: str,
        *,
        scorer: Optional[Scorer] = None,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> Optional[LLMCacheEntry]:
        """Exact match first, then the best similar query at or above ``threshold``.

        Without a ``scorer`` the similarity tier only accepts identical text.
        """
        row = self._conn.execute(
            "SELECT * FROM exact_matches WHERE query = ? AND command_type = ? LIMIT 1",
            (query, command_type),
        ).fetchone()
        if row is not None:
            entry = self._to_entry(row, "exact")
            entry.last_accessed = self._touch("exact_matches", row["id"])
            return entry

        if match_type_for(command_type) == "exact":
            return None

        rows = self._conn.execute(
            "SELECT * FROM similarity_matches WHERE command_type = ?", (command_type,)
        ).fetchall()
        if not rows:
            return None
        candidates = [candidate["query"] for candidate in rows]
        if scorer is None:
            scores: Sequence[float] = [1.0 if text == query else 0.0 for text in candidates]
        else:
            scores = scorer(query, candidates)

        best_index = max(range(len(rows)), key=lambda i: scores[i])
        best_score = float(scores[best_index])
        if best_score < threshold:
            LOGGER.debug("No cached response above %.2f for %r (best %.2f)", threshold, query, best_score)
            return None
        best = rows[best_index]
        entry = self._to_entry(best, "similarity", best_score)
        entry.last_accessed = self._touch("similarity_matches", best["id"])
        return entry

    def record(self, query: str, response: str, command_type: str) -> LLMCacheEntry:
        """Store a resolved query, replacing any entry with the same key.

        Every response goes into the exact tier; commands that tolerate near
        matches are also written to the similarity tier.
        """
        tables = ["exact_matches"]
        if match_type_for(command_type) == "similarity":
            tables.append("similarity_matches")
        now = self._clock()
        with self.transaction() as conn:
            for table in tables:
                conn.execute(
                    f"DELETE FROM {table} WHERE query = ? AND command_type = ?", (query, command_type)
                )
                conn.execute(
                    f"""
                    INSERT INTO {table}(query, response, command_type, created_at, last_accessed)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (query, response, command_type, now, now),
                )
        self.prune()
        return LLMCacheEntry(
            query=query,
            response=response,
            command_type=command_type,
            created_at=now,
            last_accessed=now,
        )

    def prune(self) -> int:
        """Apply the age and size bounds; returns the number of entries removed."""
        cutoff = self._clock() - self.max_age_days * 24 * 60 * 60
        removed = 0
        with self.transaction() as conn:
            for table in _TABLES.values():
                removed += conn.execute(
                    f"DELETE FROM {table} WHERE last_accessed < ?", (cutoff,)
                ).rowcount
                removed += conn.execute(
                    f"""
                    DELETE FROM {table} WHERE id IN (
                        SELECT id FROM {table}
                        ORDER BY last_accessed DESC, id DESC
                        LIMIT -1 OFFSET ?
                    )
                    """,
                    (self.max_entries,),
                ).rowcount
        if removed:
            LOGGER.info("Pruned %d LLM cache entries", removed)
        return removed

    def count(self, match_type: Literal["exact", "similarity"] | None = None) -> int:
        tables = [_TABLES[match_type]] if match_type else list(_TABLES.values())
        return sum(
            int(self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]) for table in tables
        )

    def clear(self) -> None:
        with self.transaction() as conn:
            for table in _TABLES.values():
                conn.execute(f"DELETE FROM {table}")
