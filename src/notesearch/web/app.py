"""FastAPI application exposing note search over HTTP."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from notesearch.config import AppConfig
from notesearch.errors import IndexUnavailable, InvalidLLMResponse, InvalidQuery
from notesearch.index.corpus import FileSystemCorpus
from notesearch.index.indexer import IndexStats
from notesearch.index.storage import SQLiteSearchStore
from notesearch.service import SearchService

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="NoteSearch", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    root: Path | None = None
    db: Path | None = None
    page: int = 1
    limit: int | None = Field(default=None, ge=1, le=100)
    lang: str | None = None


class IndexPayload(BaseModel):
    root: Path | None = None
    db: Path | None = None
    exclude: List[str] = Field(default_factory=list)


def _defaults() -> AppConfig:
    """Configuration given to ``notesearch web``, or the built-in defaults."""
    return getattr(app.state, "config", None) or AppConfig()


def _resolve_db_path(db: Path | None) -> Path:
    defaults = _defaults()
    config = AppConfig(db_path=db if db is not None else defaults.db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _config_for(root: Path | None, db: Path | None, **overrides: Any) -> AppConfig:
    defaults = _defaults()
    notes_root = root if root is not None else defaults.notes_root
    if notes_root is None:
        raise HTTPException(status_code=400, detail="No notes folder provided")
    return AppConfig(
        db_path=_resolve_db_path(db),
        notes_root=Path(notes_root).expanduser(),
        model_name=defaults.model_name,
        proximity_threshold=defaults.proximity_threshold,
        term_match_threshold=defaults.term_match_threshold,
        results_per_page=defaults.results_per_page,
        max_excerpts=defaults.max_excerpts,
        quoted_match_mode=defaults.quoted_match_mode,
        excluded_folders=overrides.pop("excluded_folders", defaults.excluded_folders),
        **overrides,
    )


def _open_service(config: AppConfig) -> SearchService:
    corpus = FileSystemCorpus(config.notes_root, excluded_folders=config.excluded_folders)
    return SearchService.from_config(config, corpus)


def _stats_payload(stats: IndexStats) -> dict[str, Any]:
    return {
        "inserted": stats.inserted,
        "updated": stats.updated,
        "skipped": stats.skipped,
        "removed": stats.removed,
        "failed": stats.failed,
        "processed_files": list(stats.processed_files),
    }


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.post("/search")
async def search_notes(payload: SearchPayload) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    config = _config_for(payload.root, payload.db)
    if not Path(config.db_path).exists():
        raise HTTPException(
            status_code=404,
            detail=f"Database not found at {config.db_path}. Index your notes first.",
        )

    service = _open_service(config)
    try:
        response = await service.search(
            query, page=max(1, payload.page), limit=payload.limit, lang=payload.lang
        )
    except InvalidQuery as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InvalidLLMResponse as exc:
        LOGGER.error("LLM returned an unusable search plan: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except IndexUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    finally:
        service.close()

    results = response.results
    return {
        "explanation": response.extraction.explanation,
        "lang": response.extraction.lang,
        "confidence": response.extraction.confidence,
        "needs_llm": response.extraction.needs_llm,
        "page": results.page,
        "total_pages": results.total_pages,
        "total_count": results.total_count,
        "results": [
            {
                "path": result.document.path,
                "score": result.score,
                "keywords_matched": sorted(result.keywords_matched),
            }
            for result in results.condition_results
        ],
        "markdown": response.markdown,
    }


@app.post("/index")
async def index_notes(payload: IndexPayload) -> dict[str, Any]:
    config = _config_for(payload.root, payload.db, excluded_folders=tuple(payload.exclude))
    _ensure_db_parent(Path(config.db_path))

    service = _open_service(config)
    try:
        stats = await service.index()
    except IndexUnavailable as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    finally:
        service.close()

    return {"status": "ok", "db": str(config.db_path), "stats": _stats_payload(stats)}


@app.post("/sync")
async def sync_notes(payload: IndexPayload) -> dict[str, Any]:
    config = _config_for(payload.root, payload.db, excluded_folders=tuple(payload.exclude))
    if not Path(config.db_path).exists():
        raise HTTPException(status_code=404, detail="Database not found")

    service = _open_service(config)
    try:
        stats = await service.sync()
    except IndexUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    finally:
        service.close()

    return {"status": "ok", "stats": _stats_payload(stats)}


@app.get("/documents")
async def list_documents(db: Path | None = None) -> dict[str, Any]:
    """List all indexed notes in the database."""
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {
            "documents": [],
            "stats": {"document_count": 0, "folder_count": 0, "term_count": 0, "token_total": 0},
        }

    store = SQLiteSearchStore(resolved_db)
    try:
        documents = store.list_documents()
        stats = store.get_stats()
    finally:
        store.close()

    return {"documents": documents, "stats": stats}


@app.delete("/documents/cleanup")
async def cleanup_missing_notes(root: Path | None = None, db: Path | None = None) -> dict[str, Any]:
    """Remove indexed notes whose files no longer exist on disk."""
    config = _config_for(root, db)
    if not Path(config.db_path).exists():
        raise HTTPException(status_code=404, detail="Database not found")

    service = _open_service(config)
    try:
        removed_count = service.prune()
    except IndexUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    finally:
        service.close()

    return {"status": "ok", "removed_count": removed_count}
