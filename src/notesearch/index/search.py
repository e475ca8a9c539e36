"""Relevance ranking of indexed notes against a search plan."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from notesearch.errors import InvalidQuery
from notesearch.index import scoring
from notesearch.index.storage import Posting, SQLiteSearchStore
from notesearch.models import ConditionResult, PaginatedSearchResult
from notesearch.query.extractor import get_quoted_query
from notesearch.query.proximity import DEFAULT_PROXIMITY_THRESHOLD, terms_proximity
from notesearch.query.schemas import SearchOperation, TagProperty
from notesearch.utils.text import Tokenizer, content_tokenizer, name_tokenizer, stem

LOGGER = logging.getLogger(__name__)

DEFAULT_TERM_MATCH_THRESHOLD = 0.7


@dataclass(slots=True)
class _Match:
    score: float = 0.0
    keywords: List[str] = field(default_factory=list)

    def add_keyword(self, keyword: str) -> None:
        if keyword not in self.keywords:
            self.keywords.append(keyword)


class RelevanceRanker:
    """Score documents against OR'd search operations."""

    def __init__(
        self,
        store: SQLiteSearchStore,
        *,
        tokenizer: Tokenizer | None = None,
        names: Tokenizer | None = None,
        proximity_threshold: int = DEFAULT_PROXIMITY_THRESHOLD,
        term_match_threshold: float = DEFAULT_TERM_MATCH_THRESHOLD,
    ) -> None:
        self.store = store
        self.tokenizer = tokenizer or content_tokenizer()
        self.name_tokenizer = names or name_tokenizer()
        self.proximity_threshold = proximity_threshold
        self.term_match_threshold = term_match_threshold

    def rank(self, operations: Sequence[SearchOperation]) -> List[ConditionResult]:
        """Documents matching any operation, best first.

        Ties are broken by ascending path so the order is total.
        """
        merged: Dict[int, _Match] = {}
        with self.store.snapshot():
            total_docs = self.store.document_count()
            for index, operation in enumerate(operations):
                if operation.is_empty:
                    LOGGER.warning("Skipping empty search operation %d", index)
                    continue
                for doc_id, match in self._evaluate(operation, total_docs).items():
                    best = merged.get(doc_id)
                    if best is None:
                        merged[doc_id] = match
                        continue
                    best.score = max(best.score, match.score)
                    for keyword in match.keywords:
                        best.add_keyword(keyword)
            documents = self.store.get_documents_by_ids(merged)

        results = [
            ConditionResult(
                document=documents[doc_id], score=match.score, keywords_matched=match.keywords
            )
            for doc_id, match in merged.items()
            if doc_id in documents
        ]
        results.sort(key=lambda result: (-result.score, result.document.path))
        LOGGER.debug("Ranked %d documents for %d operations", len(results), len(operations))
        return results

    # -- one operation ------------------------------------------------------

    def _evaluate(self, operation: SearchOperation, total_docs: int) -> Dict[int, _Match]:
        pool: Optional[Set[int]] = None
        tag_keywords: List[str] = []

        for prop in operation.properties:
            ids = self.store.find_by_property(prop.name, prop.value, nested=isinstance(prop, TagProperty))
            pool = ids if pool is None else pool & ids
            if isinstance(prop, TagProperty):
                tag_keywords.append(f"#{prop.value}")

        if operation.folders:
            ids = self.store.documents_under(self._match_folders(operation.folders))
            pool = ids if pool is None else pool & ids

        filename_scores: Dict[int, float] = {}
        if operation.filenames:
            filename_scores = self._match_filenames(operation.filenames, pool)
            pool = set(filename_scores)

        matches: Dict[int, _Match]
        if operation.keywords:
            matches = self._match_keywords(operation.keywords, pool, total_docs)
        else:
            matches = {doc_id: _Match(score=1.0) for doc_id in (pool or ())}

        for doc_id, match in matches.items():
            match.score += filename_scores.get(doc_id, 0.0)
            for keyword in tag_keywords:
                match.add_keyword(keyword)
        return matches

    def _match_folders(self, patterns: Iterable[str]) -> List[str]:
        folders = self.store.list_folders()
        matched: List[str] = []
        for pattern in patterns:
            try:
                regex = re.compile(pattern, re.IGNORECASE)
            except re.error as exc:
                raise InvalidQuery(f"Invalid folder pattern {pattern!r}: {exc}", pattern=pattern) from exc
            for folder in folders:
                if regex.search(folder.name) or (folder.path and regex.search(folder.path)):
                    matched.append(folder.path)
        if not matched:
            LOGGER.debug("No folders match %s", list(patterns))
        return matched

    def _match_filenames(self, patterns: Iterable[str], pool: Optional[Set[int]]) -> Dict[int, float]:
        """Score file names; candidates come from the file-name postings."""
        scores: Dict[int, float] = {}
        for raw in patterns:
            exact = raw.startswith("^") and raw.endswith("$") and len(raw) > 1
            prefix = raw.startswith("^") and not exact
            name = raw[1:-1] if exact else raw[1:] if prefix else raw
            name = re.sub(r"\.md$", "", name.strip(), flags=re.IGNORECASE)
            needle = name.casefold()
            if not needle:
                continue
            candidates = self.store.documents_with_name_terms(self.name_tokenizer.unique_terms(name))
            for doc_id, file_name in candidates.items():
                if pool is not None and doc_id not in pool:
                    continue
                folded = file_name.casefold()
                if exact:
                    ratio = 1.0 if folded == needle else scoring.filename_similarity(folded, needle)
                    if ratio < scoring.FILENAME_SIMILARITY_THRESHOLD:
                        continue
                elif prefix:
                    if not folded.startswith(needle):
                        continue
                    ratio = 1.0
                else:
                    if needle not in folded:
                        continue
                    ratio = 1.0
                scores[doc_id] = max(scores.get(doc_id, 0.0), ratio * scoring.FILENAME_MATCH_BOOST)
        return scores

    def _match_keywords(
        self, keywords: Sequence[str], pool: Optional[Set[int]], total_docs: int
    ) -> Dict[int, _Match]:
        """Every keyword must match; scores add up."""
        result: Optional[Dict[int, _Match]] = None
        for keyword in keywords:
            phrase = get_quoted_query(keyword)
            if phrase is not None:
                scores = self._score_phrase(phrase, pool, total_docs)
                label = phrase
            else:
                scores = self._score_terms(keyword, pool, total_docs)
                label = keyword.strip()
            if result is None:
                result = {doc_id: _Match(score, [label]) for doc_id, score in scores.items()}
            else:
                result = {doc_id: m for doc_id, m in result.items() if doc_id in scores}
                for doc_id, match in result.items():
                    match.score += scores[doc_id]
                    match.add_keyword(label)
            if not result:
                return {}
        return result or {}

    def _restrict(self, postings: Dict[int, Posting], pool: Optional[Set[int]]) -> Dict[int, Posting]:
        if pool is None:
            return postings
        return {doc_id: posting for doc_id, posting in postings.items() if doc_id in pool}

    def _score_terms(self, keyword: str, pool: Optional[Set[int]], total_docs: int) -> Dict[int, float]:
        words = list(dict.fromkeys(self.tokenizer.terms_in_order(keyword)))
        if not words:
            return {}
        variants = {word: {word, stem(word)} for word in words}
        everywhere = self.store.get_postings({v for forms in variants.values() for v in forms})
        postings = {term: self._restrict(docs, pool) for term, docs in everywhere.items()}

        per_doc: Dict[int, Dict[str, List[Posting]]] = {}
        for word, forms in variants.items():
            for form in forms:
                for doc_id, posting in postings[form].items():
                    per_doc.setdefault(doc_id, {}).setdefault(word, []).append(posting)
        if not per_doc:
            return {}

        lengths = {doc.id: doc.token_count for doc in self.store.get_documents_by_ids(per_doc).values()}
        scores: Dict[int, float] = {}
        for doc_id, matched in per_doc.items():
            coverage = len(matched) / len(words)
            if coverage < self.term_match_threshold:
                continue
            tfidf = 0.0
            positions: Dict[str, List[int]] = {}
            for word, word_postings in matched.items():
                form = max(
                    (form for form in variants[word] if doc_id in postings[form]),
                    key=lambda form: postings[form][doc_id].frequency,
                )
                tf = scoring.term_frequency(postings[form][doc_id].frequency, lengths.get(doc_id, 0))
                tfidf += tf * scoring.inverse_document_frequency(total_docs, len(everywhere[form]))
                positions[word] = sorted({p for posting in word_postings for p in posting.positions})
            score = tfidf * (1 + scoring.coverage_bonus(len(matched), len(words)))
            proximity = terms_proximity(positions, list(matched), self.proximity_threshold)
            if proximity.is_proximity:
                score += scoring.proximity_bonus(proximity.min_distances)
            scores[doc_id] = score
        return scores

    def _score_phrase(self, phrase: str, pool: Optional[Set[int]], total_docs: int) -> Dict[int, float]:
        words = self.tokenizer.terms_in_order(phrase)
        if not words:
            return {}
        everywhere = self.store.get_postings(words)
        postings = {term: self._restrict(docs, pool) for term, docs in everywhere.items()}
        candidates = set.intersection(*(set(postings[word]) for word in words))
        if not candidates:
            return {}

        lengths = {doc.id: doc.token_count for doc in self.store.get_documents_by_ids(candidates).values()}
        scores: Dict[int, float] = {}
        for doc_id in candidates:
            position_sets = [set(postings[word][doc_id].positions) for word in words]
            if not any(
                all(start + offset in position_sets[offset] for offset in range(1, len(words)))
                for start in position_sets[0]
            ):
                continue
            tfidf = sum(
                scoring.term_frequency(postings[word][doc_id].frequency, lengths.get(doc_id, 0))
                * scoring.inverse_document_frequency(total_docs, len(everywhere[word]))
                for word in set(words)
            )
            scores[doc_id] = tfidf + scoring.EXACT_PHRASE_BONUS
        return scores


def paginate(
    results: Sequence[ConditionResult], page: int = 1, limit: int = 10
) -> PaginatedSearchResult[ConditionResult]:
    limit = max(1, limit)
    total_pages = max(1, math.ceil(len(results) / limit))
    page = min(max(1, page), total_pages)
    start = (page - 1) * limit
    return PaginatedSearchResult(
        condition_results=list(results[start : start + limit]),
        total_count=len(results),
        page=page,
        limit=limit,
    )
