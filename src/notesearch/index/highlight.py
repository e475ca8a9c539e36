"""Render matched keywords as highlighted excerpts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from notesearch.errors import NoteSearchError
from notesearch.models import ConditionResult, PaginatedSearchResult
from notesearch.utils.text import STOPWORDS, Tokenizer, fold, highlight_tokenizer, stem

LOGGER = logging.getLogger(__name__)

DEFAULT_CALLOUT_TYPE = "search-result"

_KEYWORD_SPLIT_RE = re.compile(r"[,\s]+")
_LINK_TARGET_RE = re.compile(r"\]\([^)]*\)")
_WORD_RE = re.compile(r"[\w'’#/-]+")
_WHOLE_WORD_RE = re.compile(r"\w+")


@dataclass(slots=True)
class HighlightSpan:
    start: int
    end: int
    text: str


@dataclass(slots=True)
class Excerpt:
    """One highlighted line; offsets are relative to the unmarked line."""

    line: int
    start: int
    end: int
    text: str
    spans: List[HighlightSpan] = field(default_factory=list)
    path: str = ""

    def to_callout(self, callout_type: str = DEFAULT_CALLOUT_TYPE) -> str:
        header = f">[!{callout_type}] line:{self.line},start:{self.start},end:{self.end},path:{self.path}"
        body = "\n".join(">" + line for line in self.text.strip().split("\n"))
        return f"{header}\n{body}\n"


class ResultHighlighter:
    """Find and mark keyword occurrences in note content.

    Words match through their stems, so ``walking`` highlights ``walked``.
    Hashtags match as whole tokens, including nested ``#tag/sub``. Markdown link
    targets are never marked, and a line whose only matches are stopwords is
    not reported.
    """

    def __init__(
        self,
        tokenizer: Tokenizer | None = None,
        *,
        before_mark: str = "==",
        after_mark: str = "==",
        max_excerpts: int = 3,
    ) -> None:
        self.tokenizer = tokenizer or highlight_tokenizer()
        self._plain = self.tokenizer.with_config(analyzers=(), remove_stopwords=False)
        self.before_mark = before_mark
        self.after_mark = after_mark
        self.max_excerpts = max_excerpts
        self._existing_marks = re.compile(
            rf"{re.escape(before_mark)}(?=\S)(.+?)(?<=\S){re.escape(after_mark)}"
        )

    # -- patterns -----------------------------------------------------------

    def _split_keywords(self, keywords: Iterable[str]) -> Tuple[List[str], List[str]]:
        words: List[str] = []
        tags: List[str] = []
        for keyword in keywords:
            for part in _KEYWORD_SPLIT_RE.split(keyword.strip().strip("\"'")):
                part = part.strip("\"'")
                if part.startswith("#") and len(part) > 1:
                    tags.append(fold(part[1:]).rstrip("/"))
                elif part:
                    words.append(part)
        return words, tags

    def _stem_map(self, content: str) -> Dict[str, Set[str]]:
        mapping: Dict[str, Set[str]] = {}
        for term in self._plain.unique_terms(content):
            mapping.setdefault(stem(term), set()).add(term)
        return mapping

    def _term_pattern(self, words: Sequence[str], content: str) -> Optional[Pattern[str]]:
        if not words:
            return None
        stems = self._stem_map(content)
        alternatives: Set[str] = set()
        for token in self.tokenizer.tokenize(" ".join(words)):
            alternatives.add(token.term)
            alternatives.update(stems.get(token.term, ()))
            alternatives.update(stems.get(stem(token.term), ()))
        # camelCase keywords are split by the tokenizer; keep the whole word too
        for word in words:
            folded = fold(word)
            if _WHOLE_WORD_RE.fullmatch(folded):
                alternatives.add(folded)
                alternatives.update(stems.get(stem(folded), ()))
        alternatives.discard("")
        if not alternatives:
            return None
        ordered = sorted(alternatives, key=lambda term: (-len(term), term))
        return re.compile(r"(?<![#\w])(?:" + "|".join(map(re.escape, ordered)) + r")(?!\w)")

    @staticmethod
    def _tag_pattern(tags: Sequence[str]) -> Optional[Pattern[str]]:
        tags = [tag for tag in dict.fromkeys(tags) if tag]
        if not tags:
            return None
        ordered = sorted(tags, key=lambda tag: (-len(tag), tag))
        return re.compile(r"(?<![#\w])#(?:" + "|".join(map(re.escape, ordered)) + r")(?:/[\w/-]*)?(?![\w-])")

    # -- matching -----------------------------------------------------------

    def _line_spans(
        self, clean: str, patterns: Sequence[Pattern[str]]
    ) -> List[Tuple[int, int, bool]]:
        """Merged (start, end, is_tag) spans for one line, in order."""
        folded = fold(clean)
        link_targets = [(m.start() + 2, m.end() - 1) for m in _LINK_TARGET_RE.finditer(folded)]

        found: List[Tuple[int, int, bool]] = []
        for pattern in patterns:
            for match in pattern.finditer(folded):
                start, end = match.span()
                if start == end:
                    continue
                if any(start >= lo and end <= hi for lo, hi in link_targets):
                    continue
                found.append((start, end, match.group(0).startswith("#")))
        found.sort(key=lambda span: (span[0], -span[1]))

        merged: List[List] = []
        for start, end, is_tag in found:
            if merged and start < merged[-1][1]:
                continue
            if merged and not clean[merged[-1][1] : start].strip():
                merged[-1][1] = end
                merged[-1][2] = merged[-1][2] or is_tag
            else:
                merged.append([start, end, is_tag])
        return [(start, end, is_tag) for start, end, is_tag in merged]

    @staticmethod
    def _is_informative(text: str, is_tag: bool) -> bool:
        if is_tag:
            return True
        return any(fold(word).strip("'’") not in STOPWORDS for word in _WORD_RE.findall(text))

    def highlight(self, content: str, keywords_matched: Sequence[str], *, path: str = "") -> List[Excerpt]:
        """Highlighted excerpts, densest first then by line number."""
        words, tags = self._split_keywords(keywords_matched)
        patterns = [
            pattern
            for pattern in (self._tag_pattern(tags), self._term_pattern(words, content))
            if pattern is not None
        ]
        if not patterns:
            return []

        excerpts: List[Excerpt] = []
        for number, line in enumerate(content.split("\n"), start=1):
            clean = self._existing_marks.sub(r"\1", line)
            if not clean.strip():
                continue
            spans = [
                (start, end)
                for start, end, is_tag in self._line_spans(clean, patterns)
                if self._is_informative(clean[start:end], is_tag)
            ]
            if not spans:
                continue
            excerpts.append(self._excerpt(number, clean, spans, path))

        excerpts.sort(key=lambda excerpt: (-len(excerpt.spans), excerpt.line))
        return excerpts

    def _excerpt(self, number: int, clean: str, spans: List[Tuple[int, int]], path: str) -> Excerpt:
        parts: List[str] = []
        last = 0
        for start, end in spans:
            parts.append(clean[last:start])
            parts.append(f"{self.before_mark}{clean[start:end]}{self.after_mark}")
            last = end
        parts.append(clean[last:])
        return Excerpt(
            line=number,
            start=spans[0][0],
            end=spans[-1][1],
            text="".join(parts),
            spans=[HighlightSpan(start, end, clean[start:end]) for start, end in spans],
            path=path,
        )

    # -- result pages -------------------------------------------------------

    def format_results(
        self,
        paginated: PaginatedSearchResult[ConditionResult],
        read_document: Callable[[str], str],
        *,
        header: str | None = None,
        callout_type: str = DEFAULT_CALLOUT_TYPE,
    ) -> str:
        """Markdown for one page of results."""
        page = paginated.page
        response = f"{header}\n\n" if header else ""

        if page == 1:
            if paginated.total_count == 0:
                return response + "No results found. Would you like to try a different search term?"
            noun = "result" if paginated.total_count == 1 else "results"
            response += f"I found {paginated.total_count} {noun}:"
        else:
            response += f"Showing page {page} of {paginated.total_pages}"

        for index, result in enumerate(paginated.condition_results):
            display_index = (page - 1) * paginated.limit + index + 1
            path = result.document.path
            response += f"\n\n**{display_index}.** [[{path}]]\n"
            if not result.keywords_matched:
                continue
            try:
                content = read_document(path)
            except (OSError, NoteSearchError) as exc:
                LOGGER.warning("Cannot read %s for highlighting: %s", path, exc)
                continue

            excerpts = self.highlight(content, result.keywords_matched, path=path)
            for excerpt in excerpts[: self.max_excerpts]:
                response += "\n" + excerpt.to_callout(callout_type)
            hidden = len(excerpts) - self.max_excerpts
            if hidden > 0:
                response += f"\n_... and {hidden} more {'match' if hidden == 1 else 'matches'}_"

        response += (
            f"\n\nPage {page} of {paginated.total_pages} ({paginated.total_count} total results)"
        )
        return response
