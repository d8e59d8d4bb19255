#!/usr/bin/env python3
"""
Scripture Index: indexing & retrieval CLI

Operator commands for the verse vector store:
  • Emit / apply the pgvector schema and indexes
  • Run the resumable batch indexer (optionally for selected books)
  • Semantic search and similar-verse lookup from the terminal
  • Corpus statistics, checkpoint progress and coverage validation

Configuration comes from the environment / .env (see backend/app/config.py).
"""

from __future__ import annotations

import asyncio

import typer
from tabulate import tabulate

from backend.app.config import settings
from backend.app.db.postgres_async import connect
from backend.app.errors import PersistenceError, ProviderError, ScriptureIndexError
from backend.app.models import ScoredVerse
from backend.app.repositories.vectors import VectorRepository
from backend.app.services import runner
from backend.app.services.embeddings import build_embedding_provider
from backend.app.services.retrieval import RetrievalEngine, RetrievalSettings
from backend.app.services.stats import StatsService
from backend.app.utils.logging import configure_logging

app = typer.Typer(add_completion=False, help="Scripture Index: indexing & retrieval CLI")


@app.callback()
def main(
    log_level: str = typer.Option(settings.LOG_LEVEL, "--log-level", help="Root log level"),
) -> None:
    configure_logging(log_level, service_name=settings.OTEL_SERVICE_NAME)


def _fail(message: str, code: int) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, bold=True, err=True)
    return typer.Exit(code=code)


def _run(coro):
    """Run ``coro`` and turn domain errors into exit codes."""
    try:
        return asyncio.run(coro)
    except PersistenceError as exc:
        raise _fail(f"Store unavailable: {exc}", 3) from exc
    except ProviderError as exc:
        raise _fail(f"Provider error: {exc}", 4) from exc
    except LookupError as exc:
        raise _fail(str(exc), 2) from exc
    except ScriptureIndexError as exc:
        raise _fail(str(exc), 2) from exc


def _hits_table(hits: list[ScoredVerse]) -> str:
    rows = [
        {
            "score": f"{h.score:.3f}",
            "reference": h.reference,
            "translation": h.translation,
            "text": h.text,
        }
        for h in hits
    ]
    return tabulate(rows, headers="keys", tablefmt="github", maxcolwidths=[None, None, None, 80])


# ---------------------------
# CLI: Schema
# ---------------------------
@app.command("emit-ddl")
def emit_ddl() -> None:
    """Print the vector table and checkpoint table DDL."""
    for stmt in runner.emit_ddl(settings):
        typer.echo(stmt.strip() + ";\n")


@app.command("init-db")
def init_db() -> None:
    """Apply the DDL and build all indexes (idempotent)."""
    _run(runner.init_database(settings))
    typer.secho(f"Schema and indexes ready on {settings.VECTOR_TABLE} ✔", fg=typer.colors.GREEN)


# ---------------------------
# CLI: Indexing
# ---------------------------
@app.command("index")
def index(
    book: list[str] | None = typer.Option(None, "--book", "-b", help="Restrict to book code(s)"),
    no_delay: bool = typer.Option(False, "--no-delay", help="Disable pacing sleeps"),
) -> None:
    """Run the batch indexer, resuming from the checkpoint."""
    summary = _run(runner.run_indexing(settings, only_books=book or None, pacing=not no_delay))

    typer.secho("Indexing Run Summary", fg=typer.colors.CYAN, bold=True)
    typer.echo(
        tabulate(
            [
                ["books completed", len(summary.books_completed)],
                ["books failed", ", ".join(summary.books_failed) or "-"],
                ["books already done", len(summary.books_skipped)],
                ["verses indexed", summary.verses_indexed],
                ["chapters skipped", summary.chapters_skipped],
                ["upsert failures", summary.upsert_failures],
                ["total verses processed", summary.total_verses_processed],
            ],
            tablefmt="github",
        )
    )
    if summary.books_failed:
        raise typer.Exit(code=1)


# ---------------------------
# CLI: Retrieval
# ---------------------------
async def _with_engine(fn):
    conn = await connect(settings.DATABASE_URL, application_name="scripture-cli")
    try:
        engine = RetrievalEngine(
            VectorRepository.from_settings(conn, settings),
            build_embedding_provider(settings),
            RetrievalSettings.from_settings(settings),
        )
        return await fn(engine)
    finally:
        await conn.close()


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Free-text query"),
    limit: int = typer.Option(10, min=1, max=50),
    book: str | None = typer.Option(None, help="Book code filter"),
    chapter: int | None = typer.Option(None, min=1),
    translation: str | None = typer.Option(None),
    min_score: float | None = typer.Option(None, "--min-score", min=0.0, max=1.0),
    context: bool = typer.Option(False, "--context", help="Show contextual text"),
) -> None:
    """Semantic verse search (falls back to full-text when the vector index is down)."""
    outcome = _run(
        _with_engine(
            lambda engine: engine.search_with_outcome(
                query,
                limit=limit,
                book=book,
                chapter=chapter,
                translation=translation,
                min_score=min_score,
                include_context=context,
            )
        )
    )
    color = typer.colors.YELLOW if outcome.degraded else typer.colors.CYAN
    typer.secho(f"strategy: {outcome.strategy} | results: {len(outcome.results)}", fg=color)
    if not outcome.results:
        return
    typer.echo(_hits_table(outcome.results))
    if context:
        for hit in outcome.results:
            typer.echo(f"\n--- {hit.reference} ---\n{hit.verse_context or ''}")


@app.command("similar")
def similar(
    reference: str = typer.Argument(..., help='Stored reference, e.g. "John 3:16"'),
    translation: str = typer.Option(settings.TRANSLATION),
    limit: int = typer.Option(5, min=1, max=50),
) -> None:
    """Verses nearest to a stored verse."""
    hits = _run(
        _with_engine(lambda engine: engine.find_similar(reference, translation, limit=limit))
    )
    if not hits:
        typer.secho("No similar verses (vector index unavailable or empty)", fg=typer.colors.YELLOW)
        return
    typer.echo(_hits_table(hits))


# ---------------------------
# CLI: Monitoring
# ---------------------------
@app.command("stats")
def stats() -> None:
    """Total records plus counts per translation and per book."""

    async def _stats():
        conn = await connect(settings.DATABASE_URL, application_name="scripture-cli")
        try:
            service = StatsService(repository=VectorRepository.from_settings(conn, settings))
            return await service.statistics()
        finally:
            await conn.close()

    result = _run(_stats())
    typer.secho(f"Total verses: {result.total_verses}", fg=typer.colors.CYAN, bold=True)
    typer.echo(
        tabulate(
            sorted(result.by_translation.items()),
            headers=["translation", "verses"],
            tablefmt="github",
        )
    )
    typer.echo("")
    typer.echo(
        tabulate(sorted(result.by_book.items()), headers=["book", "verses"], tablefmt="github")
    )


@app.command("progress")
def progress() -> None:
    """Summarize the indexing checkpoint."""
    checkpoint = _run(runner.load_checkpoint(settings))

    typer.secho("Indexing Progress", fg=typer.colors.CYAN, bold=True)
    typer.echo(
        f"completed books: {len(checkpoint.completed_books)} | "
        f"last: {checkpoint.last_completed_book or '-'} | "
        f"verses processed: {checkpoint.total_verses_processed}"
    )
    typer.echo(
        f"started: {checkpoint.start_time.isoformat()} | "
        f"updated: {checkpoint.last_update_time.isoformat()}"
    )
    unresolved = checkpoint.unresolved_errors()
    for error in unresolved:
        typer.secho(f"  - ERROR {error.book}: {error.message}", fg=typer.colors.RED)


@app.command("validate")
def validate(
    translation: str | None = typer.Option(
        None, help="Translation to check (default from settings)"
    ),
    allow_missing_ratio: float = typer.Option(0.0, min=0.0, max=1.0),
    show_coverage: bool = typer.Option(False, "--coverage", help="Print per-book coverage"),
) -> None:
    """Check completed books against stored vectors; exit 1 on failure."""
    report = _run(runner.validate_index(settings, translation, allow_missing_ratio))

    if show_coverage:
        rows = [
            {"book": c.code, "expected": c.expected, "indexed": c.indexed, "missing": c.missing}
            for c in report.coverage
        ]
        typer.echo(tabulate(rows, headers="keys", tablefmt="github"))

    for result in report.results:
        status = "PASS" if result.passed else "FAIL"
        color = typer.colors.GREEN if result.passed else typer.colors.RED
        label = result.name.replace("_", " ").title()
        typer.secho(f"[{status}] {label}", fg=color)
        for warn in result.warnings:
            typer.secho(f"  - WARN: {warn}", fg=typer.colors.YELLOW)
        for err in result.errors:
            typer.secho(f"  - ERROR: {err}", fg=typer.colors.RED)

    raise typer.Exit(code=0 if report.passed else 1)


if __name__ == "__main__":
    app()
