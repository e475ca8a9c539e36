"""Core NoteSearch data models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Generic, List, Literal, TypeVar

import numpy as np

T = TypeVar("T")


class TermSource(IntEnum):
    """Where an indexed term was found."""

    CONTENT = 0
    FILENAME = 1


@dataclass(slots=True)
class IndexedDocument:
    """A note as seen by the index."""

    id: int
    path: str
    file_name: str
    last_modified: float
    tags: frozenset[str] = frozenset()
    token_count: int = 0

    @property
    def folder(self) -> str:
        head, _, _ = self.path.rpartition("/")
        return head


@dataclass(slots=True)
class IndexedFolder:
    id: int
    path: str
    name: str


@dataclass(slots=True)
class ConditionResult:
    """A document that satisfied at least one search operation."""

    document: IndexedDocument
    score: float
    keywords_matched: List[str] = field(default_factory=list)


@dataclass(slots=True)
class PaginatedSearchResult(Generic[T]):
    condition_results: List[T]
    total_count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_count / self.limit))


@dataclass(slots=True)
class EmbeddingEntry:
    model_name: str
    cluster_name: str
    value_text: str
    embedding: np.ndarray
    created_at: float


@dataclass(slots=True)
class ClusterVersionEntry:
    model_name: str
    cluster_name: str
    version: str
    updated_at: float


@dataclass(slots=True)
class LLMCacheEntry:
    """A cached LLM response and how it was found."""

    query: str
    response: str
    command_type: str
    created_at: float
    last_accessed: float
    match_type: Literal["exact", "similarity"] = "exact"
    similarity_score: float | None = None
