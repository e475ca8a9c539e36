"""SQLite inverted index for notes."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Set, Tuple

from notesearch.ingestion.note_loader import NoteRecord
from notesearch.models import IndexedDocument, IndexedFolder, TermSource
from notesearch.utils.text import Token

# Keeps IN (...) lists under SQLite's host parameter limit.
_CHUNK_SIZE = 500


@dataclass(slots=True)
class Posting:
    frequency: int
    positions: List[int]


def _chunks(items: Sequence, size: int = _CHUNK_SIZE) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SQLiteSearchStore:
    """Persistence layer for documents, folders, terms and properties."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

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

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Read transaction giving one consistent view of the index."""
        if self._conn.in_transaction:
            yield self._conn
            return
        self._conn.execute("BEGIN")
        try:
            yield self._conn
        finally:
            self._conn.rollback()

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS folders (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    file_name TEXT NOT NULL,
                    folder_id INTEGER NOT NULL,
                    last_modified REAL NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    token_count INTEGER NOT NULL DEFAULT 0,
                    sha256 TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(folder_id) REFERENCES folders(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS terms (
                    term TEXT NOT NULL,
                    document_id INTEGER NOT NULL,
                    source INTEGER NOT NULL,
                    frequency INTEGER NOT NULL,
                    positions TEXT NOT NULL,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS properties (
                    document_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    value TEXT NOT NULL,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_terms_term ON terms(term, source)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_terms_document_id ON terms(document_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_properties_name_value ON properties(name, value)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_properties_document_id ON properties(document_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_folder_id ON documents(folder_id)")

    # -- writes -------------------------------------------------------------

    def _ensure_folder(self, path: str) -> int:
        name = path.rsplit("/", 1)[-1] if path else "/"
        self._conn.execute("INSERT OR IGNORE INTO folders(path, name) VALUES (?, ?)", (path, name))
        row = self._conn.execute("SELECT id FROM folders WHERE path = ?", (path,)).fetchone()
        return int(row["id"])

    def _delete_rows(self, doc_id: int, folder_id: int) -> None:
        conn = self._conn
        conn.execute("DELETE FROM terms WHERE document_id = ?", (doc_id,))
        conn.execute("DELETE FROM properties WHERE document_id = ?", (doc_id,))
        conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        remaining = conn.execute(
            "SELECT 1 FROM documents WHERE folder_id = ? LIMIT 1", (folder_id,)
        ).fetchone()
        if remaining is None:
            conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))

    def _insert_terms(self, doc_id: int, tokens: Iterable[Token], source: TermSource) -> None:
        self._conn.executemany(
            """
            INSERT INTO terms(term, document_id, source, frequency, positions)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (token.term, doc_id, int(source), token.count, json.dumps(token.positions))
                for token in tokens
            ],
        )

    def replace_document(
        self,
        record: NoteRecord,
        *,
        last_modified: float,
        sha256: str,
        content_tokens: Sequence[Token],
        name_tokens: Sequence[Token],
    ) -> str:
        """Insert or replace a document and its terms.

        Returns 'inserted', 'updated', or 'skipped' when the content hash is unchanged.
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id, folder_id, sha256 FROM documents WHERE path = ?", (record.path,)
            ).fetchone()
            if existing and existing["sha256"] == sha256:
                conn.execute(
                    "UPDATE documents SET last_modified = ? WHERE id = ?",
                    (last_modified, existing["id"]),
                )
                return "skipped"
            if existing:
                self._delete_rows(existing["id"], existing["folder_id"])

            folder_id = self._ensure_folder(record.folder)
            doc_id = conn.execute(
                """
                INSERT INTO documents(path, file_name, folder_id, last_modified, tags, token_count, sha256)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.path,
                    record.file_name,
                    folder_id,
                    last_modified,
                    json.dumps(record.tags, ensure_ascii=False),
                    record.token_count,
                    sha256,
                ),
            ).lastrowid
            self._insert_terms(doc_id, content_tokens, TermSource.CONTENT)
            self._insert_terms(doc_id, name_tokens, TermSource.FILENAME)
            conn.executemany(
                "INSERT INTO properties(document_id, name, value) VALUES (?, ?, ?)",
                [(doc_id, name.lower(), value.lower()) for name, value in record.properties],
            )
        return "updated" if existing else "inserted"

    def delete_document_by_path(self, path: str) -> bool:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id, folder_id FROM documents WHERE path = ?", (path,)
            ).fetchone()
            if row is None:
                return False
            self._delete_rows(row["id"], row["folder_id"])
        return True

    def clear(self) -> None:
        with self.transaction() as conn:
            for table in ("terms", "properties", "documents", "folders"):
                conn.execute(f"DELETE FROM {table}")

    # -- reads --------------------------------------------------------------

    @staticmethod
    def _to_document(row: sqlite3.Row) -> IndexedDocument:
        return IndexedDocument(
            id=row["id"],
            path=row["path"],
            file_name=row["file_name"],
            last_modified=row["last_modified"],
            tags=frozenset(json.loads(row["tags"])),
            token_count=row["token_count"],
        )

    def get_document(self, path: str) -> IndexedDocument | None:
        row = self._conn.execute("SELECT * FROM documents WHERE path = ?", (path,)).fetchone()
        return self._to_document(row) if row else None

    def get_documents_by_ids(self, ids: Iterable[int]) -> Dict[int, IndexedDocument]:
        unique = sorted(set(ids))
        documents: Dict[int, IndexedDocument] = {}
        for chunk in _chunks(unique):
            placeholders = ",".join("?" * len(chunk))
            rows = self._conn.execute(
                f"SELECT * FROM documents WHERE id IN ({placeholders})", tuple(chunk)
            ).fetchall()
            for row in rows:
                documents[row["id"]] = self._to_document(row)
        return documents

    def get_postings(
        self, terms: Iterable[str], source: TermSource = TermSource.CONTENT
    ) -> Dict[str, Dict[int, Posting]]:
        """Map each term to the documents containing it."""
        unique = sorted(set(terms))
        postings: Dict[str, Dict[int, Posting]] = {term: {} for term in unique}
        for chunk in _chunks(unique):
            placeholders = ",".join("?" * len(chunk))
            rows = self._conn.execute(
                f"""
                SELECT term, document_id, frequency, positions FROM terms
                WHERE source = ? AND term IN ({placeholders})
                """,
                (int(source), *chunk),
            ).fetchall()
            for row in rows:
                postings[row["term"]][row["document_id"]] = Posting(
                    row["frequency"], json.loads(row["positions"])
                )
        return postings

    def find_by_property(self, name: str, value: str, *, nested: bool = False) -> Set[int]:
        """Documents with property ``name == value``; ``nested`` also accepts ``value/...``."""
        name, value = name.lower(), value.lower()
        if nested:
            rows = self._conn.execute(
                """
                SELECT DISTINCT document_id FROM properties
                WHERE name = ? AND (value = ? OR substr(value, 1, ?) = ?)
                """,
                (name, value, len(value) + 1, value + "/"),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT DISTINCT document_id FROM properties WHERE name = ? AND value = ?",
                (name, value),
            ).fetchall()
        return {row["document_id"] for row in rows}

    def list_folders(self) -> List[IndexedFolder]:
        rows = self._conn.execute("SELECT id, path, name FROM folders ORDER BY path").fetchall()
        return [IndexedFolder(id=row["id"], path=row["path"], name=row["name"]) for row in rows]

    def documents_under(self, folder_paths: Iterable[str]) -> Set[int]:
        """Documents in the given folders or any of their subfolders."""
        ids: Set[int] = set()
        for folder in set(folder_paths):
            if not folder:
                rows = self._conn.execute("SELECT id FROM documents").fetchall()
            else:
                rows = self._conn.execute(
                    """
                    SELECT d.id FROM documents d JOIN folders f ON f.id = d.folder_id
                    WHERE f.path = ? OR substr(f.path, 1, ?) = ?
                    """,
                    (folder, len(folder) + 1, folder + "/"),
                ).fetchall()
            ids.update(row["id"] for row in rows)
        return ids

    def documents_with_name_terms(self, prefixes: Iterable[str]) -> Dict[int, str]:
        """File names of documents with a file-name term starting with any of ``prefixes``."""
        found: Dict[int, str] = {}
        for prefix in set(prefixes):
            if not prefix:
                continue
            rows = self._conn.execute(
                """
                SELECT DISTINCT d.id, d.file_name FROM terms t JOIN documents d ON d.id = t.document_id
                WHERE t.source = ? AND substr(t.term, 1, ?) = ?
                """,
                (int(TermSource.FILENAME), len(prefix), prefix),
            ).fetchall()
            found.update((row["id"], row["file_name"]) for row in rows)
        return found

    def document_count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def is_index_built(self) -> bool:
        return self.document_count() > 0

    def known_documents(self) -> Dict[str, Tuple[float, str]]:
        """Path -> (last_modified, sha256) for every indexed note."""
        rows = self._conn.execute("SELECT path, last_modified, sha256 FROM documents").fetchall()
        return {row["path"]: (row["last_modified"], row["sha256"]) for row in rows}

    def list_documents(self) -> List[dict]:
        rows = self._conn.execute(
            """
            SELECT id, path, file_name, last_modified, token_count, tags, updated_at
            FROM documents ORDER BY path
            """
        ).fetchall()
        return [
            {
                "id": row["id"],
                "path": row["path"],
                "file_name": row["file_name"],
                "last_modified": row["last_modified"],
                "token_count": row["token_count"],
                "tags": json.loads(row["tags"]),
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]

    def get_stats(self) -> dict:
        conn = self._conn
        return {
            "document_count": self.document_count(),
            "folder_count": conn.execute("SELECT COUNT(*) FROM folders").fetchone()[0],
            "term_count": conn.execute("SELECT COUNT(DISTINCT term) FROM terms").fetchone()[0],
            "token_total": conn.execute(
                "SELECT COALESCE(SUM(token_count), 0) FROM documents"
            ).fetchone()[0],
        }
