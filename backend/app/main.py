"""
Scripture Index FastAPI Application

Read surface over the verse vector store. Provides REST endpoints for:
- Semantic verse search (pgvector cosine similarity)
- Lexical fallback search (PostgreSQL full-text) when the vector index is down
- Similar-verse lookup for a stored reference
- Corpus statistics and per-book indexing coverage

Architecture:
    - Database: PostgreSQL with pgvector extension
    - Embeddings: 768-D vectors from embeddinggemma (Ollama) or Gemini
    - Search: HNSW cosine index + GIN full-text index

Environment Configuration:
    All settings loaded from .env file via pydantic-settings.
    See backend/app/config.py for available configuration options.

API Endpoints:
    - /v1/healthz, /v1/readyz: Liveness and readiness
    - /v1/vectors/*: Search, similar verses, stats, coverage
    - /metrics: Prometheus exposition

Interactive Documentation:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db.postgres_async import close_pool, init_pool
from .middleware.request_logging import RequestLoggingMiddleware
from .routers import health, monitoring, vectors
from .utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Opens the asyncpg pool on startup and closes it on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None (context manager pattern for startup/shutdown)
    """
    await init_pool(min_size=1, max_size=16)
    try:
        yield
    finally:
        await close_pool()


configure_logging(settings.LOG_LEVEL, service_name=settings.OTEL_SERVICE_NAME)

app = FastAPI(
    title="Scripture Index API",
    description="Semantic verse retrieval over a pgvector store",
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=JSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(vectors.router, prefix=settings.API_PREFIX)
app.include_router(monitoring.router)  # No prefix - uses /metrics directly

exempt_paths = {
    "/",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/metrics",
    f"{settings.API_PREFIX}/healthz",
    f"{settings.API_PREFIX}/readyz",
}

app.add_middleware(RequestLoggingMiddleware, exempt_paths=exempt_paths)
