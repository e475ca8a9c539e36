"""Tokenization, normalization and stemming helpers."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Callable, Dict, List, Sequence

from nltk.stem import PorterStemmer

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in",
        "into", "is", "it", "no", "not", "of", "on", "or", "such", "that", "the",
        "their", "then", "there", "these", "they", "this", "to", "was", "will", "with",
        # markdown formatting
        "*", "**", "***", "---", "```", "#", "##", "###", "####", "#####", "######",
        "-", "_", "`", "~", "|", "{", "}", "[", "]", "(", ")", '"', "'", "\\", "/", "@",
    }
)

_STEMMER = PorterStemmer()

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
# Anything that is not a letter, digit, apostrophe, whitespace or one of #_-
_DISALLOWED_RE = re.compile(r"[^\w'’\s#-]")
_REPEATED_MARKS_RE = re.compile(r"[#_-]{2,}")
_TAG_PREFIX_RE = re.compile(r"#([^#\s]+)")
_DELIMITER_RE = re.compile(r"[-_]")
_BOUNDARY_APOSTROPHES_RE = re.compile(r"^['’]+|['’]+$")


@lru_cache(maxsize=16384)
def stem(word: str) -> str:
    """Porter stem of a single lowercased word."""
    return _STEMMER.stem(word)


def remove_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFC", stripped)


def split_camel_case(text: str) -> str:
    """MeetingNotes -> Meeting Notes, XMLParser -> XML Parser."""
    out: List[str] = []
    for i, ch in enumerate(text):
        if i and ch.isupper():
            prev = text[i - 1]
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if prev.islower() or (prev.isupper() and nxt.islower()):
                out.append(" ")
        out.append(ch)
    return "".join(out)


def remove_special_chars(text: str) -> str:
    return _REPEATED_MARKS_RE.sub(" ", _DISALLOWED_RE.sub(" ", text))


def _fold_char(ch: str) -> str:
    lowered = ch.lower()
    base = "".join(c for c in unicodedata.normalize("NFD", lowered) if not unicodedata.combining(c))
    return base if len(base) == 1 else ch


def fold(text: str) -> str:
    """Lowercase and strip diacritics without changing the string length.

    Offsets computed on the folded string are valid on the original.
    """
    return "".join(_fold_char(ch) for ch in text)


NORMALIZERS: Dict[str, Callable[[str], str]] = {
    "remove_html_comments": lambda text: _HTML_COMMENT_RE.sub(" ", text),
    # must run before lowercase
    "split_camel_case": split_camel_case,
    "lowercase": str.lower,
    "remove_diacritics": remove_diacritics,
    "remove_special_chars": remove_special_chars,
    "remove_tag_prefix": lambda text: _TAG_PREFIX_RE.sub(r"\1", text),
}


@dataclass(slots=True)
class Token:
    term: str
    count: int
    positions: List[int] = field(default_factory=list)
    is_original: bool = True

    def merge(self, count: int, positions: Sequence[int]) -> None:
        self.count += count
        self.positions = sorted(set(self.positions).union(positions))


def _word_delimiter(tokens: List[Token]) -> List[Token]:
    """Split hyphenated and snake_case words and keep the original token."""
    by_term: Dict[str, Token] = {}
    for token in tokens:
        by_term[token.term] = Token(token.term, token.count, list(token.positions), token.is_original)

    for token in tokens:
        has_delimiters = _DELIMITER_RE.search(token.term) is not None
        has_apostrophes = _BOUNDARY_APOSTROPHES_RE.search(token.term) is not None
        if not (has_delimiters or has_apostrophes):
            continue
        stripped = _BOUNDARY_APOSTROPHES_RE.sub("", token.term)
        for part in filter(None, _DELIMITER_RE.split(stripped)):
            existing = by_term.get(part)
            if existing is not None:
                existing.merge(1, token.positions)
            else:
                by_term[part] = Token(part, 1, list(token.positions))
    return list(by_term.values())


def _stemmer(tokens: List[Token]) -> List[Token]:
    """Add the stemmed form of every token next to the original."""
    by_term: Dict[str, Token] = {}
    for token in tokens:
        existing = by_term.get(token.term)
        if existing is not None:
            existing.merge(token.count, token.positions)
            existing.is_original = True
        else:
            by_term[token.term] = Token(token.term, token.count, list(token.positions), True)

        stemmed = stem(token.term)
        if stemmed == token.term:
            continue
        existing = by_term.get(stemmed)
        if existing is not None:
            existing.merge(token.count, token.positions)
        else:
            by_term[stemmed] = Token(stemmed, token.count, list(token.positions), False)
    return list(by_term.values())


ANALYZERS: Dict[str, Callable[[List[Token]], List[Token]]] = {
    "word_delimiter": _word_delimiter,
    "stemmer": _stemmer,
}

DEFAULT_NORMALIZERS = (
    "remove_html_comments",
    "split_camel_case",
    "lowercase",
    "remove_diacritics",
    "remove_special_chars",
)


@dataclass(frozen=True, slots=True)
class TokenizerConfig:
    remove_stopwords: bool = True
    normalizers: tuple[str, ...] = DEFAULT_NORMALIZERS
    analyzers: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in self.normalizers:
            if name not in NORMALIZERS:
                raise ValueError(f"Unknown normalizer: {name}")
        for name in self.analyzers:
            if name not in ANALYZERS:
                raise ValueError(f"Unknown analyzer: {name}")


class Tokenizer:
    """Turn text into terms with counts and positions.

    Stopwords are removed before positions are assigned, so positions index the
    filtered word sequence. Analyzers may add derived tokens that share the
    positions of the word they came from.
    """

    def __init__(self, config: TokenizerConfig | None = None) -> None:
        self.config = config or TokenizerConfig()

    def with_config(self, **changes: object) -> "Tokenizer":
        return Tokenizer(replace(self.config, **changes))

    def normalize(self, text: str) -> str:
        for name in self.config.normalizers:
            text = NORMALIZERS[name](text)
        return text

    def words(self, text: str) -> List[str]:
        words = self.normalize(text).split()
        if self.config.remove_stopwords:
            words = [word for word in words if word not in STOPWORDS]
        return words

    def terms_in_order(self, text: str) -> List[str]:
        """Normalized words in source order, before any analyzer runs."""
        return self.words(text)

    def tokenize(self, text: str) -> List[Token]:
        by_term: Dict[str, Token] = {}
        for position, word in enumerate(self.words(text)):
            token = by_term.get(word)
            if token is None:
                by_term[word] = Token(word, 1, [position])
            else:
                token.count += 1
                token.positions.append(position)

        tokens = list(by_term.values())
        for name in self.config.analyzers:
            tokens = ANALYZERS[name](tokens)
        return tokens

    def unique_terms(self, text: str) -> List[str]:
        return [token.term for token in self.tokenize(text)]


def content_tokenizer() -> Tokenizer:
    """Tokenizer used for note bodies."""
    return Tokenizer(
        TokenizerConfig(
            remove_stopwords=True,
            normalizers=DEFAULT_NORMALIZERS + ("remove_tag_prefix",),
            analyzers=("word_delimiter", "stemmer"),
        )
    )


def name_tokenizer() -> Tokenizer:
    """Tokenizer used for file and folder names."""
    return Tokenizer(
        TokenizerConfig(
            remove_stopwords=False,
            normalizers=DEFAULT_NORMALIZERS + ("remove_tag_prefix",),
            analyzers=("word_delimiter",),
        )
    )


def highlight_tokenizer() -> Tokenizer:
    """Tokenizer used to build the stem map for highlighting; keeps stopwords."""
    return Tokenizer(
        TokenizerConfig(
            remove_stopwords=False,
            normalizers=DEFAULT_NORMALIZERS,
            analyzers=("word_delimiter", "stemmer"),
        )
    )
