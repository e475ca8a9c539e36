"""Error types raised by NoteSearch components."""

from __future__ import annotations


class NoteSearchError(Exception):
    """Base class for all NoteSearch errors."""


class InvalidQuery(NoteSearchError):
    """A query or a pattern inside a structured operation cannot be evaluated."""

    def __init__(self, message: str, *, pattern: str | None = None) -> None:
        super().__init__(message)
        self.pattern = pattern


class InvalidLLMResponse(NoteSearchError):
    """The LLM returned text that does not match the search plan schema."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class EmbeddingComputeFailure(NoteSearchError):
    """The embedding model failed; no cache state was changed."""


class IndexUnavailable(NoteSearchError):
    """The notes corpus cannot be reached."""
