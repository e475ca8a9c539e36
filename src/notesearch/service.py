"""Search service wiring the components together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from notesearch.cache.llm_cache import LLMResponseCache
from notesearch.config import AppConfig
from notesearch.errors import InvalidLLMResponse, InvalidQuery
from notesearch.index.corpus import Corpus
from notesearch.index.highlight import ResultHighlighter
from notesearch.index.indexer import Indexer, IndexStats
from notesearch.index.search import RelevanceRanker, paginate
from notesearch.index.storage import SQLiteSearchStore
from notesearch.models import ConditionResult, PaginatedSearchResult
from notesearch.query.extractor import (
    QueryExtractor,
    StructuredLLM,
    parse_llm_response,
    resolve_lang,
)
from notesearch.query.schemas import SearchOperation, SearchQueryExtraction

LOGGER = logging.getLogger(__name__)

SEARCH_COMMAND = "search"


@dataclass(slots=True)
class SearchResponse:
    extraction: SearchQueryExtraction
    results: PaginatedSearchResult[ConditionResult]
    markdown: str


class SearchService:
    """Query -> plan -> ranked documents -> highlighted markdown."""

    def __init__(
        self,
        store: SQLiteSearchStore,
        corpus: Corpus,
        *,
        extractor: QueryExtractor,
        ranker: RelevanceRanker,
        highlighter: ResultHighlighter,
        llm_cache: LLMResponseCache | None = None,
        results_per_page: int = 10,
    ) -> None:
        self.store = store
        self.corpus = corpus
        self.extractor = extractor
        self.ranker = ranker
        self.highlighter = highlighter
        self.llm_cache = llm_cache
        self.results_per_page = results_per_page
        self.indexer = Indexer(store, corpus)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        corpus: Corpus,
        *,
        llm: StructuredLLM | None = None,
        base_dir: Path | None = None,
    ) -> "SearchService":
        db_path = config.resolve_db_path(base_dir)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        store = SQLiteSearchStore(db_path)
        llm_cache = None
        if llm is not None:
            llm_cache = LLMResponseCache(
                config.cache_db_path(base_dir),
                max_age_days=config.llm_cache_max_age_days,
                max_entries=config.llm_cache_max_entries,
            )
        return cls(
            store,
            corpus,
            extractor=QueryExtractor(llm, match_mode=config.quoted_match_mode),
            ranker=RelevanceRanker(
                store,
                proximity_threshold=config.proximity_threshold,
                term_match_threshold=config.term_match_threshold,
            ),
            highlighter=ResultHighlighter(max_excerpts=config.max_excerpts),
            llm_cache=llm_cache,
            results_per_page=config.results_per_page,
        )

    def close(self) -> None:
        self.store.close()
        if self.llm_cache is not None:
            self.llm_cache.close()

    async def index(self, folder: str = "") -> IndexStats:
        return await self.indexer.index_folder(folder)

    async def sync(self) -> IndexStats:
        return await self.indexer.sync()

    def prune(self) -> int:
        return self.indexer.prune()

    async def extract(self, query: str, lang: Optional[str] = None) -> SearchQueryExtraction:
        query = query.strip()
        if not query:
            raise InvalidQuery("Empty query")

        fast = self.extractor.extract_without_llm(query, lang)
        if fast is not None:
            return fast

        if self.extractor.llm is None:
            LOGGER.warning("No LLM configured; searching for the query as keywords")
            return SearchQueryExtraction(
                operations=[SearchOperation(keywords=[query])],
                explanation=f'Searching for "{query}"',
                lang=resolve_lang(lang),
                confidence=0,
                needs_llm=True,
            )

        if self.llm_cache is not None:
            cached = self.llm_cache.lookup(query, SEARCH_COMMAND)
            if cached is not None:
                try:
                    LOGGER.debug("Using cached search plan (%s match)", cached.match_type)
                    return QueryExtractor.from_plan(parse_llm_response(cached.response), lang)
                except InvalidLLMResponse:
                    LOGGER.warning("Discarding invalid cached search plan for %r", query)

        extraction = await self.extractor.extract(query, lang)
        if self.llm_cache is not None:
            self.llm_cache.record(query, extraction.model_dump_json(), SEARCH_COMMAND)
        return extraction

    async def search(
        self,
        query: str,
        *,
        page: int = 1,
        limit: int | None = None,
        lang: Optional[str] = None,
    ) -> SearchResponse:
        extraction = await self.extract(query, lang)
        ranked = self.ranker.rank(extraction.operations)
        results = paginate(ranked, page, limit or self.results_per_page)
        markdown = self.highlighter.format_results(
            results, self.corpus.read_document, header=extraction.explanation
        )
        return SearchResponse(extraction=extraction, results=results, markdown=markdown)
