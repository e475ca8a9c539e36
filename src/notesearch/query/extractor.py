"""Turn a raw user query into a structured search plan."""

from __future__ import annotations

import logging
import re
from typing import List, Literal, Optional, Protocol

from pydantic import ValidationError

from notesearch.errors import InvalidLLMResponse
from notesearch.query.schemas import (
    LLMSearchPlan,
    SearchOperation,
    SearchQueryExtraction,
    TagProperty,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_LANG = "en"

_TAG_RE = re.compile(r"#([^\s#]+)")
_TAG_TRAILER_RE = re.compile(r"[,\s;|&+]+$")
_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)

SEARCH_SYSTEM_PROMPT = """You extract search parameters from user queries for a markdown note search system.

Return only a JSON object with this shape:
{
  "operations": [
    {
      "keywords": [string],
      "filenames": [string],
      "folders": [string],
      "properties": [{"name": string, "value": string}]
    }
  ],
  "explanation": string,
  "lang": string,
  "confidence": number between 0 and 1
}

Guidelines:
- Keywords are terms or concepts to look for in note content. Keep quotation marks
  around a phrase when the user wants an exact match.
- Filenames are note names without the .md extension. Use ^name$ for an exact
  name, ^name for a prefix, or the bare name for a partial match.
- Folders follow the same convention. Use ^/$ for the root folder.
- Properties: {"name": "tag", "value": "<tag without #>"} for tags,
  {"name": "file_type", "value": "<extension>"} for file types,
  {"name": "file_category", "value": "document|image|audio|video|data|code"}
  for categories, and the frontmatter key and value for anything else.
- Use several operations when the user asks for alternative criteria.
- If the query has typos, include both the original and the corrected terms.
"""

_TAG_HINT = "- The query contains tags prefixed with #, for example #cat.\n"


class StructuredLLM(Protocol):
    """LLM collaborator that answers with JSON text."""

    async def generate_structured_response(self, system_prompt: str, user_prompt: str) -> str:
        ...


def get_quoted_query(text: str) -> Optional[str]:
    """Return the inner text when ``text`` is wrapped in matching quotes.

    Backslash-escaped quotes are allowed inside. Empty content yields ``None``.
    """
    trimmed = text.strip()
    if len(trimmed) < 2:
        return None
    quote = trimmed[0]
    if quote not in ('"', "'") or trimmed[-1] != quote:
        return None
    pattern = rf"^{quote}(?:[^{quote}\\]*(?:\\.[^{quote}\\]*)*){quote}$"
    if re.match(pattern, trimmed, re.DOTALL) is None:
        return None
    inner = trimmed[1:-1]
    return inner or None


def resolve_lang(hint: Optional[str]) -> str:
    if hint is None:
        return DEFAULT_LANG
    return hint.strip().lower() or DEFAULT_LANG


def parse_llm_response(raw: str) -> LLMSearchPlan:
    """Validate the LLM's JSON answer, tolerating a surrounding code fence."""
    text = raw.strip()
    fenced = _CODE_FENCE_RE.match(text)
    if fenced is not None:
        text = fenced.group(1)
    try:
        return LLMSearchPlan.model_validate_json(text)
    except ValidationError as exc:
        raise InvalidLLMResponse(f"Invalid search plan from LLM: {exc}", raw=raw) from exc


class QueryExtractor:
    """Resolve queries deterministically when possible, otherwise ask the LLM."""

    def __init__(
        self,
        llm: StructuredLLM | None = None,
        *,
        match_mode: Literal["exact", "relevant"] = "exact",
    ) -> None:
        self.llm = llm
        self.match_mode = match_mode

    def extract_without_llm(
        self, query: str, lang: Optional[str] = None
    ) -> Optional[SearchQueryExtraction]:
        quoted = get_quoted_query(query)
        if quoted is not None:
            return self._quoted_extraction(quoted, resolve_lang(lang))

        tags = self._tag_only(query)
        if tags:
            operation = SearchOperation(properties=[TagProperty(value=tag) for tag in tags])
            return SearchQueryExtraction(
                operations=[operation],
                explanation="Searching for tags: " + ", ".join(f"#{tag}" for tag in tags),
                lang=resolve_lang(lang),
                confidence=1,
                needs_llm=False,
            )
        return None

    async def extract(self, query: str, lang: Optional[str] = None) -> SearchQueryExtraction:
        fast = self.extract_without_llm(query, lang)
        if fast is not None:
            LOGGER.debug("Resolved query without LLM: %s", fast.explanation)
            return fast

        if self.llm is None:
            return SearchQueryExtraction(
                operations=[],
                explanation="This query needs an LLM to interpret it.",
                lang=resolve_lang(lang),
                confidence=0,
                needs_llm=True,
            )

        system_prompt = SEARCH_SYSTEM_PROMPT
        if _TAG_RE.search(query):
            system_prompt += _TAG_HINT
        raw = await self.llm.generate_structured_response(system_prompt, query.strip())
        return self.from_plan(parse_llm_response(raw), lang)

    @staticmethod
    def from_plan(plan: LLMSearchPlan, lang: Optional[str] = None) -> SearchQueryExtraction:
        for index, operation in enumerate(plan.operations):
            if operation.is_empty:
                LOGGER.warning("Operation %d has all empty fields", index)
        return SearchQueryExtraction(
            operations=plan.operations,
            explanation=plan.explanation,
            lang=resolve_lang(plan.lang or lang),
            confidence=plan.confidence,
            needs_llm=True,
        )

    def _quoted_extraction(self, term: str, lang: str) -> SearchQueryExtraction:
        keyword = f'"{term}"' if self.match_mode == "exact" else term
        return SearchQueryExtraction(
            operations=[
                SearchOperation(filenames=[f"^{term}$"]),
                SearchOperation(keywords=[keyword]),
            ],
            explanation=f'Searching for "{term}"',
            lang=lang,
            confidence=1,
            needs_llm=False,
        )

    @staticmethod
    def _tag_only(query: str) -> List[str]:
        trimmed = query.strip()
        if _TAG_RE.sub("", trimmed).strip():
            return []
        tags = [_TAG_TRAILER_RE.sub("", match.group(1)) for match in _TAG_RE.finditer(trimmed)]
        return [tag for tag in tags if tag]
