"""Process-level wiring for batch indexing, shared by the CLI and Dagster.

Each entry point opens one asyncpg connection, builds its collaborators from
:class:`Settings`, and closes the connection when done.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import asyncpg

from backend.validation import (
    BookCoverage,
    ValidationResult,
    validate_book_coverage,
    validate_checkpoint_errors,
)

from ..config import Settings
from ..db.postgres_async import connect
from ..repositories.checkpoints import CHECKPOINT_DDL, CheckpointRepository
from ..repositories.vectors import VectorRepository, schema_statements
from ..utils.logging import get_logger
from .checkpoint import Checkpoint, CheckpointStore, FileCheckpointStore, load_or_create
from .embeddings import build_embedding_provider
from .indexer import BatchIndexer, IndexerConfig, IndexingRunSummary
from .scripture_source import ScriptureApiClient
from .stats import StatsService

logger = get_logger(__name__)


@dataclass
class ValidationReport:
    """Coverage rows plus the rule results computed from them."""

    translation: str
    coverage: list[BookCoverage]
    results: list[ValidationResult]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)


def emit_ddl(config: Settings) -> list[str]:
    """Schema statements for the vector table and the checkpoint table."""
    return [*schema_statements(config.VECTOR_TABLE, config.EMBEDDING_DIM), CHECKPOINT_DDL.strip()]


def build_checkpoint_store(config: Settings, conn: asyncpg.Connection) -> CheckpointStore:
    if config.CHECKPOINT_BACKEND == "postgres":
        return CheckpointRepository(conn, run_name=config.CHECKPOINT_RUN)
    return FileCheckpointStore(config.CHECKPOINT_PATH)


async def init_database(config: Settings) -> None:
    """Apply DDL and build all vector indexes."""
    conn = await connect(config.DATABASE_URL)
    try:
        repo = VectorRepository.from_settings(conn, config)
        await repo.create_schema()
        await CheckpointRepository(conn, run_name=config.CHECKPOINT_RUN).create_table()
        await repo.create_indexes()
    finally:
        await conn.close()


async def create_indexes(config: Settings) -> None:
    conn = await connect(config.DATABASE_URL)
    try:
        await VectorRepository.from_settings(conn, config).create_indexes()
    finally:
        await conn.close()


async def run_indexing(
    config: Settings,
    *,
    only_books: Sequence[str] | None = None,
    pacing: bool = True,
) -> IndexingRunSummary:
    """Run the batch indexer against the configured edition and store."""
    conn = await connect(config.DATABASE_URL)
    try:
        checkpoints = build_checkpoint_store(config, conn)
        if isinstance(checkpoints, CheckpointRepository):
            await checkpoints.create_table()
        indexer = BatchIndexer(
            source=ScriptureApiClient(
                config.BIBLE_API_KEY,
                api_base=config.BIBLE_API_BASE,
                timeout=config.HTTP_TIMEOUT_SECONDS,
            ),
            embedder=build_embedding_provider(config),
            store=VectorRepository.from_settings(conn, config),
            checkpoints=checkpoints,
            config=IndexerConfig.from_settings(config, pacing=pacing),
            only_books=only_books,
        )
        return await indexer.run()
    finally:
        await conn.close()


async def load_checkpoint(config: Settings) -> Checkpoint:
    """Current checkpoint, or an empty one when no run has saved yet."""
    if config.CHECKPOINT_BACKEND != "postgres":
        return await load_or_create(FileCheckpointStore(config.CHECKPOINT_PATH))
    conn = await connect(config.DATABASE_URL)
    try:
        return await load_or_create(CheckpointRepository(conn, run_name=config.CHECKPOINT_RUN))
    finally:
        await conn.close()


async def validate_index(
    config: Settings, translation: str | None = None, allow_missing_ratio: float = 0.0
) -> ValidationReport:
    """Compare stored vectors with the catalog and the checkpoint."""
    translation = translation or config.TRANSLATION
    checkpoint = await load_checkpoint(config)
    conn = await connect(config.DATABASE_URL)
    try:
        stats = StatsService(repository=VectorRepository.from_settings(conn, config))
        coverage = await stats.coverage(translation)
    finally:
        await conn.close()

    results = [
        validate_book_coverage(coverage, checkpoint.completed_books, allow_missing_ratio),
        validate_checkpoint_errors(checkpoint),
    ]
    report = ValidationReport(translation=translation, coverage=coverage, results=results)
    logger.info(
        "index_validated",
        extra={
            "translation": translation,
            "passed": report.passed,
            "errors": sum(len(r.errors) for r in results),
            "warnings": sum(len(r.warnings) for r in results),
        },
    )
    return report
