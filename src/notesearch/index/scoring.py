"""Scoring functions used by the relevance ranker."""

from __future__ import annotations

import math
from difflib import SequenceMatcher
from typing import Sequence

MAX_COVERAGE_BONUS = 0.5
EXACT_PHRASE_BONUS = 10.0
FILENAME_MATCH_BOOST = 5.0
FILENAME_SIMILARITY_THRESHOLD = 0.7


def term_frequency(frequency: int, doc_length: int) -> float:
    """Sub-linear TF normalised by document length."""
    if frequency <= 0:
        return 0.0
    return (1 + math.log10(frequency)) / math.log10(2 + max(doc_length, 0))


def inverse_document_frequency(total_docs: int, docs_with_term: int) -> float:
    if docs_with_term <= 0 or total_docs <= 0:
        return 0.0
    return math.log(1 + total_docs / docs_with_term)


def coverage_bonus(matched: int, total: int, maximum: float = MAX_COVERAGE_BONUS) -> float:
    if total <= 0:
        return 0.0
    return maximum * (matched / total) ** 1.5


def proximity_bonus(distances: Sequence[int]) -> float:
    """Closer terms score higher: sum of ``1 / (1 + d)``."""
    return sum(1.0 / (1 + distance) for distance in distances)


def filename_similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.casefold(), b.casefold()).ratio()
