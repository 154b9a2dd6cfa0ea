"""Command line interface for memrecall."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from memrecall.config import PROVIDER_NAMES, MemoryConfig
from memrecall.manager import MemoryIndexManager
from memrecall.recall import build_memory_recall_context

console = Console()
app = typer.Typer(help="memrecall - hybrid recall over markdown memory files")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(db: Optional[Path], provider: Optional[str], model: Optional[str]) -> MemoryConfig:
    config = MemoryConfig.from_env(base_dir=Path.cwd())
    if provider is not None and provider not in PROVIDER_NAMES:
        raise typer.BadParameter(
            f"Unknown provider {provider!r}; choose one of {', '.join(PROVIDER_NAMES)}"
        )
    return replace(
        config,
        db_path=config.resolve_db_path(Path.cwd()) if db is None else db,
        embedding_provider=provider or config.embedding_provider,
        embedding_model=model or config.embedding_model,
    )


def _require_db(config: MemoryConfig) -> None:
    if not config.resolve_db_path().exists():
        raise typer.BadParameter(f"Database not found: {config.resolve_db_path()}")


@app.command()
def index(
    inputs: List[Path] = typer.Argument(
        ..., help="Markdown files or directories to index.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option(None, help="Embedding provider: openai, local, sentence-transformers"),
    model: str = typer.Option(None, help="Embedding model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index markdown files into the memory store."""
    _setup_logging(verbose)
    config = _build_config(db, provider, model)

    async def _run():
        async with MemoryIndexManager(config) as manager:
            return await manager.indexer.index_paths(inputs)

    console.print(f"Indexing into [bold]{config.resolve_db_path()}[/bold]...")
    stats = asyncio.run(_run())
    if not stats.processed_files:
        console.print("[yellow]No markdown files found.[/yellow]")
        return
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, skipped: {stats.skipped}, "
        f"removed: {stats.removed}, failed: {stats.failed}"
    )


@app.command()
def sync(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option(None, help="Embedding provider"),
    model: str = typer.Option(None, help="Embedding model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Re-index every configured source directory."""
    _setup_logging(verbose)
    config = _build_config(db, provider, model)

    async def _run() -> int:
        async with MemoryIndexManager(config) as manager:
            await manager.sync()
            return manager.store.count_chunks()

    chunks = asyncio.run(_run())
    dirs = ", ".join(str(path) for path in config.source_dirs)
    console.print(f"Synced {dirs}: {chunks} chunks indexed.")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option(None, help="Embedding provider"),
    model: str = typer.Option(None, help="Embedding model name"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a hybrid memory search."""
    _setup_logging(verbose)
    config = _build_config(db, provider, model)
    _require_db(config)

    async def _run():
        async with MemoryIndexManager(config) as manager:
            return await manager.search_with_diagnostics(query, top_k)

    outcome = asyncio.run(_run())
    if not outcome.results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Vector")
    table.add_column("BM25")
    table.add_column("Source")
    table.add_column("Snippet")

    for result in outcome.results:
        snippet = result.content.replace("\n", " ")
        table.add_row(
            f"{result.score:.4f}",
            f"{result.vector_score:.3f}",
            f"{result.bm25_score:.3f}",
            result.source,
            snippet[:180],
        )

    console.print(table)
    diagnostics = outcome.diagnostics
    console.print(
        f"mode={diagnostics.mode} stale={diagnostics.stale_sources_after} "
        f"latency={diagnostics.latency_ms}ms"
    )


@app.command()
def recall(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option(None, help="Embedding provider"),
    model: str = typer.Option(None, help="Embedding model name"),
    top_k: int = typer.Option(3, help="Number of results to consider"),
    max_chars: int = typer.Option(2200, help="Character budget"),
    max_tokens: int = typer.Option(480, help="Approximate token budget"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Print the recall context a prompt would receive."""
    _setup_logging(verbose)
    config = _build_config(db, provider, model)
    _require_db(config)

    async def _run() -> str:
        async with MemoryIndexManager(config) as manager:
            return await build_memory_recall_context(
                memory_manager=manager,
                query=query,
                top_k=top_k,
                max_chars=max_chars,
                max_tokens=max_tokens,
            )

    context = asyncio.run(_run())
    if not context:
        console.print("[yellow]No relevant memory.[/yellow]")
        return
    console.print(context, markup=False, highlight=False)


@app.command()
def prune(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Remove chunks whose source files no longer exist on disk."""
    _setup_logging(verbose)
    config = _build_config(db, "local", None)
    if not config.resolve_db_path().exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    async def _run() -> int:
        async with MemoryIndexManager(config) as manager:
            return manager.prune()

    removed = asyncio.run(_run())
    console.print(f"Removed {removed} orphaned sources.")


if __name__ == "__main__":
    app()
