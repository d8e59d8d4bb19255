"""Retrieval engine: semantic verse search with a lexical fallback.

The vector stage is primary. When it is unavailable (the ANN query fails on a
reachable store, or the query cannot be embedded) the engine reruns the same
request as a full-text search over ``searchable_text`` and rescales the text
rank into the similarity range so the same ``min_score`` threshold applies.
Only an unreachable store or an invalid request reaches the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..errors import ProviderError, SearchUnavailableError, ValidationError
from ..models import ScoredVerse, VectorRecord
from ..utils.logging import get_logger
from ..utils.metrics import SEARCH_FALLBACKS, SEARCH_REQUESTS
from .embeddings import EmbeddingProvider
from .pipeline import MatchStage, SearchPipeline, text_pipeline, vector_pipeline

logger = get_logger(__name__)

Strategy = Literal["vector", "lexical"]


class VectorStore(Protocol):
    async def execute(self, pipeline: SearchPipeline) -> list[ScoredVerse]: ...

    async def get_record(self, reference: str, translation: str) -> VectorRecord | None: ...


@dataclass(frozen=True)
class RetrievalSettings:
    """Tunables for candidate oversampling and score calibration."""

    candidate_multiplier: int = 10
    default_min_score: float = 0.5
    lexical_score_divisor: float = 0.2

    @classmethod
    def from_settings(cls, config: Settings) -> RetrievalSettings:
        return cls(
            default_min_score=config.DEFAULT_MIN_SCORE,
            lexical_score_divisor=config.LEXICAL_SCORE_DIVISOR,
        )


@dataclass
class SearchOutcome:
    """Results plus which strategy produced them."""

    results: list[ScoredVerse] = field(default_factory=list)
    strategy: Strategy = "vector"

    @property
    def degraded(self) -> bool:
        return self.strategy != "vector"


class RetrievalEngine:
    """Ranked, score-filtered verse retrieval over a :class:`VectorStore`."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        config: RetrievalSettings | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or RetrievalSettings()

    async def search(
        self,
        query_text: str,
        *,
        limit: int = 10,
        book: str | None = None,
        chapter: int | None = None,
        translation: str | None = None,
        min_score: float | None = None,
        include_context: bool = False,
    ) -> list[ScoredVerse]:
        """Return at most ``limit`` verses with ``score >= min_score``.

        Args:
            query_text: Free-text query; must contain non-whitespace characters.
            limit: Maximum number of results.
            book: Optional book code filter.
            chapter: Optional chapter filter.
            translation: Optional translation filter.
            min_score: Similarity threshold (defaults to the configured value).
            include_context: Also return ``verse_context`` and ``chapter_context``.

        Returns:
            Hits in the store's descending-similarity order, possibly empty.

        Raises:
            ValidationError: Empty query or non-positive limit.
            PersistenceError: The store is unreachable.
        """
        outcome = await self.search_with_outcome(
            query_text,
            limit=limit,
            book=book,
            chapter=chapter,
            translation=translation,
            min_score=min_score,
            include_context=include_context,
        )
        return outcome.results

    async def search_with_outcome(
        self,
        query_text: str,
        *,
        limit: int = 10,
        book: str | None = None,
        chapter: int | None = None,
        translation: str | None = None,
        min_score: float | None = None,
        include_context: bool = False,
    ) -> SearchOutcome:
        if not query_text or not query_text.strip():
            raise ValidationError("Query text must not be empty")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        threshold = self._config.default_min_score if min_score is None else min_score
        num_candidates = limit * self._config.candidate_multiplier
        try:
            match = MatchStage(book=book, chapter=chapter, translation=translation)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid search filters: {exc}") from exc

        try:
            query_vector = await self._embedder.embed(query_text)
            hits = await self._store.execute(
                vector_pipeline(
                    query_vector, num_candidates, match=match, include_context=include_context
                )
            )
            strategy: Strategy = "vector"
        except (SearchUnavailableError, ProviderError) as exc:
            SEARCH_FALLBACKS.inc()
            logger.warning(
                "search_fallback",
                extra={"reason": type(exc).__name__, "error": str(exc), "limit": limit},
            )
            hits = await self._store.execute(
                text_pipeline(
                    query_text,
                    num_candidates,
                    self._config.lexical_score_divisor,
                    match=match,
                    include_context=include_context,
                )
            )
            strategy = "lexical"

        SEARCH_REQUESTS.labels(strategy=strategy).inc()
        results = _apply_threshold(hits, threshold, limit)
        logger.info(
            "search_completed",
            extra={
                "strategy": strategy,
                "candidates": len(hits),
                "returned": len(results),
                "min_score": threshold,
            },
        )
        return SearchOutcome(results=results, strategy=strategy)

    async def find_similar(
        self, reference: str, translation: str, limit: int = 5
    ) -> list[ScoredVerse]:
        """Verses nearest to a stored verse, excluding the verse itself.

        There is no free-text query to fall back on, so an unavailable vector
        stage yields an empty list.

        Raises:
            LookupError: No record exists for ``(reference, translation)``.
            ValidationError: Non-positive limit.
            PersistenceError: The store is unreachable.
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        source = await self._store.get_record(reference, translation)
        if source is None:
            raise LookupError(f"Verse not found: {reference} ({translation})")

        pipeline = vector_pipeline(
            source.embedding,
            (limit + 1) * self._config.candidate_multiplier,
            match=MatchStage(exclude_reference=reference, exclude_translation=translation),
        )
        try:
            hits = await self._store.execute(pipeline)
        except SearchUnavailableError as exc:
            logger.warning(
                "similar_search_unavailable",
                extra={"reference": reference, "translation": translation, "error": str(exc)},
            )
            return []

        hits = [h for h in hits if not (h.reference == reference and h.translation == translation)]
        return hits[:limit]


def _apply_threshold(hits: list[ScoredVerse], threshold: float, limit: int) -> list[ScoredVerse]:
    """Keep hits at or above ``threshold`` without reordering, then cap at ``limit``."""
    return [hit for hit in hits if hit.score >= threshold][:limit]
