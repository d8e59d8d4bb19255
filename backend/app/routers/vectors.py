"""
Verse vector retrieval router.

Thin read surface over :class:`RetrievalEngine` and :class:`StatsService`.

Example Usage:
    ```bash
    curl -X POST http://localhost:8000/v1/vectors/search \\
         -H 'Content-Type: application/json' \\
         -d '{"query": "love your enemies", "limit": 5, "translation": "KJV"}'

    curl 'http://localhost:8000/v1/vectors/similar?reference=John%203:16&translation=KJV'
    ```
"""

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..config import settings
from ..db.postgres_async import get_pg
from ..errors import PersistenceError, ValidationError
from ..models import BookCoverageOut, CorpusStatistics, ScoredVerse, SearchRequest, SearchResponse
from ..repositories.vectors import VectorRepository
from ..services.embeddings import EmbeddingProvider, build_embedding_provider
from ..services.retrieval import RetrievalEngine, RetrievalSettings
from ..services.stats import StatsService

router = APIRouter(prefix="/vectors", tags=["vectors"])


def get_vector_repository(conn: asyncpg.Connection = Depends(get_pg)) -> VectorRepository:
    """Dependency provider for VectorRepository."""
    return VectorRepository.from_settings(conn, settings)


def get_embedder() -> EmbeddingProvider:
    """Dependency provider for the configured embedding adapter."""
    return build_embedding_provider(settings)


def get_retrieval_engine(
    repository: VectorRepository = Depends(get_vector_repository),
    embedder: EmbeddingProvider = Depends(get_embedder),
) -> RetrievalEngine:
    """Dependency provider for RetrievalEngine."""
    return RetrievalEngine(repository, embedder, RetrievalSettings.from_settings(settings))


def get_stats_service(
    repository: VectorRepository = Depends(get_vector_repository),
) -> StatsService:
    """Dependency provider for StatsService."""
    return StatsService(repository=repository)


@router.post("/search", response_model=SearchResponse)
async def search_vectors(
    body: SearchRequest,
    request: Request,
    engine: RetrievalEngine = Depends(get_retrieval_engine),
) -> SearchResponse:
    """
    Semantic verse search with transparent lexical fallback.

    ``strategy`` reports which path served the request and ``degraded`` is
    true when the lexical fallback was used.

    Status Codes:
        200: Results (possibly empty)
        422: Invalid request body
        503: Vector store unreachable
    """
    try:
        outcome = await engine.search_with_outcome(
            body.query,
            limit=body.limit,
            book=body.book,
            chapter=body.chapter,
            translation=body.translation,
            min_score=body.min_score,
            include_context=body.include_context,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Vector store unavailable") from exc
    request.state.search_strategy = outcome.strategy
    request.state.degraded = outcome.degraded
    request.state.result_count = len(outcome.results)
    return SearchResponse(
        results=outcome.results, strategy=outcome.strategy, degraded=outcome.degraded
    )


@router.get("/similar", response_model=list[ScoredVerse])
async def similar_verses(
    reference: str = Query(..., min_length=1),
    translation: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
) -> list[ScoredVerse]:
    """
    Verses nearest to a stored verse.

    Status Codes:
        200: Results (empty when the vector index is unavailable)
        404: No stored vector for the reference/translation
        503: Vector store unreachable
    """
    try:
        return await engine.find_similar(reference, translation, limit=limit)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Vector store unavailable") from exc


@router.get("/stats", response_model=CorpusStatistics)
async def vector_stats(service: StatsService = Depends(get_stats_service)) -> CorpusStatistics:
    """Total records plus counts by translation and by book name."""
    try:
        return await service.statistics()
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Vector store unavailable") from exc


@router.get("/coverage", response_model=list[BookCoverageOut])
async def vector_coverage(
    translation: str = Query(default=settings.TRANSLATION, min_length=1),
    service: StatsService = Depends(get_stats_service),
) -> list[BookCoverageOut]:
    """Indexed versus expected verse counts per catalog book for one translation."""
    try:
        coverage = await service.coverage(translation)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="Vector store unavailable") from exc
    return [
        BookCoverageOut(
            code=c.code, name=c.name, expected=c.expected, indexed=c.indexed, missing=c.missing
        )
        for c in coverage
    ]
