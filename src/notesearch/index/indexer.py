"""Note indexing pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from notesearch.index.corpus import Corpus, CorpusEvent
from notesearch.index.storage import SQLiteSearchStore
from notesearch.ingestion.note_loader import load_note
from notesearch.utils.files import sha256_text
from notesearch.utils.text import Tokenizer, content_tokenizer, name_tokenizer

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    removed: int = 0
    failed: int = 0
    processed_files: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        elif status == "removed":
            self.removed += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Keeps the search store in step with the corpus."""

    def __init__(
        self,
        store: SQLiteSearchStore,
        corpus: Corpus,
        *,
        content: Tokenizer | None = None,
        names: Tokenizer | None = None,
        batch_size: int = 50,
    ) -> None:
        self.store = store
        self.corpus = corpus
        self.content_tokenizer = content or content_tokenizer()
        self.name_tokenizer = names or name_tokenizer()
        self.batch_size = max(1, batch_size)

    def index_document(self, path: str) -> str:
        """Index a single note; returns the store status."""
        text = self.corpus.read_document(path)
        record = load_note(path, text)
        return self.store.replace_document(
            record,
            last_modified=self.corpus.last_modified(path),
            sha256=sha256_text(text),
            content_tokens=self.content_tokenizer.tokenize(record.body),
            name_tokens=self.name_tokenizer.tokenize(record.file_name),
        )

    async def index_folder(self, folder: str = "") -> IndexStats:
        """Index every note under ``folder``, yielding to the event loop between batches."""
        paths = self.corpus.list_documents(folder)
        stats = IndexStats()
        if not paths:
            LOGGER.warning("No notes found in %s", folder or "the notes root")
            return stats

        for start in range(0, len(paths), self.batch_size):
            for path in paths[start : start + self.batch_size]:
                try:
                    status = self.index_document(path)
                except Exception as exc:
                    LOGGER.error("Failed to index %s: %s", path, exc)
                    status = "failed"
                stats.increment(status, path)
            await asyncio.sleep(0)

        LOGGER.info(
            "Indexed %d notes (inserted %d, updated %d, skipped %d, failed %d)",
            len(paths),
            stats.inserted,
            stats.updated,
            stats.skipped,
            stats.failed,
        )
        return stats

    def handle_event(self, event: CorpusEvent) -> str:
        if event.kind == "deleted":
            removed = self.store.delete_document_by_path(event.path)
            return "removed" if removed else "skipped"
        return self.index_document(event.path)

    def diff_events(self) -> List[CorpusEvent]:
        """Compare the corpus with the store and describe what changed."""
        known = self.store.known_documents()
        current = self.corpus.list_documents()
        events: List[CorpusEvent] = []
        for path in current:
            if path not in known:
                events.append(CorpusEvent("created", path))
            elif self.corpus.last_modified(path) != known[path][0]:
                events.append(CorpusEvent("modified", path))
        current_set = set(current)
        events.extend(CorpusEvent("deleted", path) for path in sorted(known) if path not in current_set)
        return events

    async def sync(self) -> IndexStats:
        stats = IndexStats()
        events = self.diff_events()
        for start in range(0, len(events), self.batch_size):
            for event in events[start : start + self.batch_size]:
                try:
                    status = self.handle_event(event)
                except Exception as exc:
                    LOGGER.error("Failed to apply %s for %s: %s", event.kind, event.path, exc)
                    status = "failed"
                stats.increment(status, event.path)
            await asyncio.sleep(0)
        return stats

    def prune(self) -> int:
        """Remove indexed notes that no longer exist in the corpus."""
        current = set(self.corpus.list_documents())
        removed = 0
        for path in self.store.known_documents():
            if path not in current and self.store.delete_document_by_path(path):
                removed += 1
        if removed:
            LOGGER.info("Removed %d missing notes", removed)
        return removed
