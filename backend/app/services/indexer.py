"""Resumable batch indexer walking the book → chapter → verse catalog.

The run is strictly sequential: one chapter fetch and one embedding call are
in flight at a time, and all pacing is explicit sleeping between batches,
chapters and books. Progress is checkpointed after every book transition so a
killed process resumes at the first book not yet completed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..errors import ProviderError, ValidationError
from ..models import BatchUpsertResult, BookMetadata, SourceBook, VectorRecord
from ..utils.catalog import load_catalog, resolve_book_context, resolve_verse_themes
from ..utils.logging import get_logger
from ..utils.metrics import (
    BATCHES_FLUSHED,
    BOOKS_PROCESSED,
    CHAPTERS_SKIPPED,
    UPSERT_FAILURES,
    VERSES_INDEXED,
)
from .checkpoint import Checkpoint, CheckpointStore, load_or_create
from .context_text import BookContext, VerseInput, build_contextual_text, format_reference
from .embeddings import EmbeddingProvider
from .scripture_source import ScriptureSource, parse_verses, resolve_source_book_id

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class IndexerState(str, Enum):
    IDLE = "idle"
    SELECTING_BOOK = "selecting_book"
    PROCESSING_CHAPTER = "processing_chapter"
    FLUSHING_BATCH = "flushing_batch"
    BOOK_COMPLETE = "book_complete"
    BOOK_FAILED = "book_failed"
    DELAYING = "delaying"
    DONE = "done"


class VectorSink(Protocol):
    async def create_indexes(self) -> None: ...

    async def upsert_batch(self, records: Sequence[VectorRecord]) -> BatchUpsertResult: ...


@dataclass(frozen=True)
class IndexerConfig:
    """Edition, batching and pacing parameters for a run."""

    edition_id: str
    translation: str
    batch_size: int = 10
    batch_delay: float = 0.2
    chapter_delay: float = 3.0
    recovery_delay: float = 300.0
    pacing: bool = True

    @classmethod
    def from_settings(cls, config: Settings, *, pacing: bool = True) -> IndexerConfig:
        return cls(
            edition_id=config.EDITION_ID,
            translation=config.TRANSLATION,
            batch_size=config.BATCH_SIZE,
            batch_delay=config.BATCH_DELAY_SECONDS,
            chapter_delay=config.CHAPTER_DELAY_SECONDS,
            recovery_delay=config.RECOVERY_DELAY_SECONDS,
            pacing=pacing,
        )


def inter_book_delay(next_book_verses: int) -> float:
    """Seconds to wait before a book with ``next_book_verses`` verses."""
    if next_book_verses < 100:
        return 120.0
    if next_book_verses < 500:
        return 300.0
    if next_book_verses < 1000:
        return 420.0
    return 600.0


@dataclass
class BookProgress:
    code: str
    verses: int = 0
    chapters_indexed: int = 0
    chapters_skipped: int = 0
    upsert_failures: int = 0


@dataclass
class IndexingRunSummary:
    books_completed: list[str] = field(default_factory=list)
    books_failed: list[str] = field(default_factory=list)
    books_skipped: list[str] = field(default_factory=list)
    verses_indexed: int = 0
    chapters_skipped: int = 0
    upsert_failures: int = 0
    total_verses_processed: int = 0


class BatchIndexer:
    """Drive source → contextual text → embedding → store for every pending book.

    Collaborators are injected so a run can be exercised end to end with
    in-memory fakes; ``sleep`` is the only pacing primitive.
    """

    def __init__(
        self,
        *,
        source: ScriptureSource,
        embedder: EmbeddingProvider,
        store: VectorSink,
        checkpoints: CheckpointStore,
        config: IndexerConfig,
        catalog: Sequence[BookMetadata] | None = None,
        only_books: Sequence[str] | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if config.batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        self._source = source
        self._embedder = embedder
        self._store = store
        self._checkpoints = checkpoints
        self._config = config
        self._catalog = list(catalog) if catalog is not None else load_catalog()
        self._sleep = sleep
        self._only = self._resolve_filter(only_books)
        self._source_books: list[SourceBook] | None = None
        self.state = IndexerState.IDLE

    def _resolve_filter(self, only_books: Sequence[str] | None) -> set[str] | None:
        if not only_books:
            return None
        known = {book.code for book in self._catalog}
        wanted = {code.upper() for code in only_books}
        unknown = sorted(wanted - known)
        if unknown:
            raise ValidationError(f"Unknown book codes: {', '.join(unknown)}")
        return wanted

    def _transition(self, state: IndexerState) -> None:
        logger.debug("indexer_state", extra={"from": self.state.value, "to": state.value})
        self.state = state

    async def _pause(self, seconds: float) -> None:
        if not self._config.pacing or seconds <= 0:
            return
        await self._sleep(seconds)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> IndexingRunSummary:
        """Index every book not yet completed in the checkpoint.

        Raises:
            PersistenceError: A checkpoint write or vector upsert could not reach its store.
        """
        checkpoint = await load_or_create(self._checkpoints)
        summary = IndexingRunSummary(total_verses_processed=checkpoint.total_verses_processed)

        pending = [
            book
            for book in self._catalog
            if not checkpoint.is_completed(book.code)
            and (self._only is None or book.code in self._only)
        ]
        summary.books_skipped = [b.code for b in self._catalog if checkpoint.is_completed(b.code)]
        logger.info(
            "indexing_started",
            extra={
                "pending_books": len(pending),
                "completed_books": len(checkpoint.completed_books),
                "translation": self._config.translation,
            },
        )

        if not pending:
            self._transition(IndexerState.DONE)
            logger.info("indexing_nothing_pending")
            return summary

        await self._store.create_indexes()

        for position, book in enumerate(pending):
            self._transition(IndexerState.SELECTING_BOOK)
            next_book = pending[position + 1] if position + 1 < len(pending) else None
            started = time.perf_counter()
            logger.info(
                "book_started",
                extra={"book": book.code, "position": position + 1, "of": len(pending)},
            )

            try:
                progress = await self._index_book(book, checkpoint)
            except (ProviderError, ValidationError) as exc:
                self._transition(IndexerState.BOOK_FAILED)
                checkpoint.record_error(book.code, str(exc))
                await self._checkpoints.save(checkpoint)
                BOOKS_PROCESSED.labels(outcome="failed").inc()
                summary.books_failed.append(book.code)
                logger.error("book_failed", extra={"book": book.code, "error": str(exc)})
                if next_book is not None:
                    self._transition(IndexerState.DELAYING)
                    await self._pause(self._config.recovery_delay)
                continue
            finally:
                summary.total_verses_processed = checkpoint.total_verses_processed

            self._transition(IndexerState.BOOK_COMPLETE)
            checkpoint.mark_completed(book.code)
            await self._checkpoints.save(checkpoint)
            BOOKS_PROCESSED.labels(outcome="completed").inc()
            summary.books_completed.append(book.code)
            summary.verses_indexed += progress.verses
            summary.chapters_skipped += progress.chapters_skipped
            summary.upsert_failures += progress.upsert_failures
            logger.info(
                "book_completed",
                extra={
                    "book": book.code,
                    "verses": progress.verses,
                    "chapters_indexed": progress.chapters_indexed,
                    "chapters_skipped": progress.chapters_skipped,
                    "total_verses_processed": checkpoint.total_verses_processed,
                    "completed_books": len(checkpoint.completed_books),
                    "duration_s": round(time.perf_counter() - started, 3),
                },
            )

            if next_book is not None:
                self._transition(IndexerState.DELAYING)
                delay = inter_book_delay(next_book.verses)
                logger.info(
                    "inter_book_delay",
                    extra={"next_book": next_book.code, "seconds": delay},
                )
                await self._pause(delay)

        self._transition(IndexerState.DONE)
        logger.info(
            "indexing_finished",
            extra={
                "completed": summary.books_completed,
                "failed": summary.books_failed,
                "verses_indexed": summary.verses_indexed,
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Book / chapter / batch
    # ------------------------------------------------------------------

    async def _resolve_book_id(self, book: BookMetadata) -> str:
        if self._source_books is None:
            self._source_books = await self._source.get_books(self._config.edition_id)
        book_id = resolve_source_book_id(self._source_books, book.code)
        if book_id is None:
            raise ProviderError(
                f"Book {book.code} not found in edition {self._config.edition_id}",
                provider="scripture",
            )
        return book_id

    async def _index_book(self, book: BookMetadata, checkpoint: Checkpoint) -> BookProgress:
        book_id = await self._resolve_book_id(book)
        progress = BookProgress(code=book.code)

        for chapter in range(1, book.chapters + 1):
            self._transition(IndexerState.PROCESSING_CHAPTER)
            try:
                await self._index_chapter(book, book_id, chapter, progress, checkpoint)
            except ValidationError as exc:
                progress.chapters_skipped += 1
                CHAPTERS_SKIPPED.labels(reason="no_verses").inc()
                logger.warning(
                    "chapter_skipped",
                    extra={"book": book.code, "chapter": chapter, "reason": str(exc)},
                )
            except ProviderError as exc:
                progress.chapters_skipped += 1
                CHAPTERS_SKIPPED.labels(reason="provider").inc()
                logger.warning(
                    "chapter_skipped",
                    extra={
                        "book": book.code,
                        "chapter": chapter,
                        "reason": str(exc),
                        "provider": exc.provider,
                    },
                )
            else:
                progress.chapters_indexed += 1

            if chapter < book.chapters:
                await self._pause(self._config.chapter_delay)

        if progress.chapters_indexed == 0:
            raise ProviderError(
                f"No chapters of {book.code} could be indexed "
                f"({progress.chapters_skipped} skipped)"
            )
        return progress

    async def _index_chapter(
        self,
        book: BookMetadata,
        book_id: str,
        chapter: int,
        progress: BookProgress,
        checkpoint: Checkpoint,
    ) -> None:
        raw = await self._source.get_chapter(self._config.edition_id, f"{book_id}.{chapter}")
        verses = parse_verses(raw.content)
        if not verses:
            raise ValidationError(f"No verses parsed for {book.code} {chapter}")

        info = resolve_book_context(book, chapter)
        batch: list[VectorRecord] = []
        last = len(verses) - 1
        for idx, verse in enumerate(verses):
            reference = format_reference(book.name, chapter, verse.number)
            themes = resolve_verse_themes(book, chapter, verse.number)
            verse_context = build_contextual_text(
                VerseInput(
                    reference=reference,
                    text=verse.text,
                    chapter=chapter,
                    verse_number=verse.number,
                ),
                BookContext(
                    name=book.name,
                    description=info.description,
                    chapter_theme=info.chapter_theme,
                    themes=tuple(themes),
                ),
                prev_verse_text=verses[idx - 1].text if idx > 0 else None,
                next_verse_text=verses[idx + 1].text if idx < last else None,
            )
            embedding = await self._embedder.embed(verse_context)
            try:
                record = VectorRecord(
                    reference=reference,
                    translation=self._config.translation,
                    book=book.code,
                    book_name=book.name,
                    chapter=chapter,
                    verse=verse.number,
                    text=verse.text,
                    chapter_context=info.chapter_theme,
                    verse_context=verse_context,
                    embedding=embedding,
                    embedding_model=self._embedder.model,
                    testament=book.testament,
                    genre=book.genre,
                    themes=themes,
                )
            except PydanticValidationError as exc:
                raise ProviderError(f"Invalid record for {reference}: {exc}") from exc
            batch.append(record)
            if len(batch) >= self._config.batch_size or idx == last:
                await self._flush(batch, progress, checkpoint)
                batch = []
                self._transition(IndexerState.PROCESSING_CHAPTER)

    async def _flush(
        self, batch: list[VectorRecord], progress: BookProgress, checkpoint: Checkpoint
    ) -> None:
        self._transition(IndexerState.FLUSHING_BATCH)
        result = await self._store.upsert_batch(batch)
        progress.verses += result.upserted
        progress.upsert_failures += result.failed
        checkpoint.add_verses(result.upserted)
        VERSES_INDEXED.inc(result.upserted)
        BATCHES_FLUSHED.inc()
        if result.failed:
            UPSERT_FAILURES.inc(result.failed)
        logger.debug(
            "batch_flushed",
            extra={
                "book": progress.code,
                "upserted": result.upserted,
                "failed": result.failed,
                "total_verses_processed": checkpoint.total_verses_processed,
            },
        )
        await self._pause(self._config.batch_delay)
