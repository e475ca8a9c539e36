"""Command line interface for NoteSearch."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from notesearch.config import AppConfig
from notesearch.embedding.cache import EmbeddingCache
from notesearch.errors import IndexUnavailable, InvalidQuery, NoteSearchError
from notesearch.index.corpus import FileSystemCorpus
from notesearch.service import SearchService
from notesearch.web.app import app as web_app


console = Console()
app = typer.Typer(help="NoteSearch - natural-language search for markdown notes")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_config(db: Optional[Path], root: Optional[Path] = None, **overrides) -> AppConfig:
    return AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        notes_root=root,
        **overrides,
    )


def _open_service(config: AppConfig) -> SearchService:
    corpus = FileSystemCorpus(config.notes_root, excluded_folders=config.excluded_folders)
    return SearchService.from_config(config, corpus, base_dir=Path.cwd())


@app.command()
def index(
    root: Path = typer.Argument(..., help="Notes folder to index.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    exclude: List[str] = typer.Option([], "--exclude", help="Folder names to skip"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index every markdown note under ROOT."""
    _setup_logging(verbose)
    config = _build_config(db, root, excluded_folders=tuple(exclude))
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    service = _open_service(config)
    console.print(f"Indexing into [bold]{resolved_db}[/bold]...")
    try:
        stats = asyncio.run(service.index())
    except IndexUnavailable as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    if not stats.processed_files:
        console.print("[yellow]No notes found.[/yellow]")
        return
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}"
    )


@app.command()
def sync(
    root: Path = typer.Option(..., "--root", help="Notes folder", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Apply created, modified and deleted notes to an existing index."""
    _setup_logging(verbose)
    config = _build_config(db, root)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    service = _open_service(config)
    try:
        stats = asyncio.run(service.sync())
    except IndexUnavailable as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"removed: {stats.removed}, failed: {stats.failed}"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    root: Path = typer.Option(..., "--root", help="Notes folder", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    page: int = typer.Option(1, help="Result page to show"),
    limit: int = typer.Option(AppConfig().results_per_page, help="Results per page"),
    mode: str = typer.Option(
        AppConfig().quoted_match_mode, "--mode", help="Quoted query matching: exact or relevant"
    ),
    table: bool = typer.Option(False, "--table", help="Show a score table instead of markdown"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search indexed notes."""
    _setup_logging(verbose)
    try:
        config = _build_config(db, root, quoted_match_mode=mode, results_per_page=limit)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    service = _open_service(config)
    try:
        response = asyncio.run(service.search(query, page=page, limit=limit))
    except (InvalidQuery, IndexUnavailable) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    if not table:
        console.print(response.markdown, markup=False, highlight=False, soft_wrap=True)
        return

    results = response.results
    if not results.condition_results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    score_table = Table(show_header=True, header_style="bold magenta")
    score_table.add_column("Score")
    score_table.add_column("Note")
    score_table.add_column("Matched")

    for result in results.condition_results:
        score_table.add_row(
            f"{result.score:.4f}",
            result.document.path,
            ", ".join(sorted(result.keywords_matched)),
        )

    console.print(score_table)
    console.print(f"Page {results.page} of {results.total_pages} ({results.total_count} total results)")


@app.command()
def prune(
    root: Path = typer.Option(..., "--root", help="Notes folder", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove indexed notes that no longer exist on disk."""
    config = _build_config(db, root)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    service = _open_service(config)
    try:
        removed = service.prune()
    except NoteSearchError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        service.close()
    console.print(f"Removed {removed} orphaned notes.")


@app.command("clear-embeddings")
def clear_embeddings(
    model: Optional[str] = typer.Argument(
        None, help="Model whose cached embeddings should be dropped (default: the configured model)"
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Drop cached embeddings of a model that is no longer used."""
    config = _build_config(db)
    model = model or config.model_name
    cache_db = config.cache_db_path(Path.cwd())
    if not cache_db.exists():
        console.print("[yellow]Cache database not found, nothing to clear.[/yellow]")
        return

    cache = EmbeddingCache(cache_db)
    try:
        removed = cache.clear_embeddings_for_model(model)
    finally:
        cache.close()
    console.print(f"Removed {removed} embeddings for {model}.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    root: Path = typer.Option(None, "--root", help="Default notes folder", resolve_path=True),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    config = _build_config(db, root)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, searches might fail.[/yellow]")

    web_app.state.config = config
    console.print(f"Starting web interface on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
