"""
Pytest configuration and shared fixtures for the Scripture Index tests.

Provides:
- Test client setup with FastAPI TestClient
- Mock database fixtures for unit tests
- In-memory service fakes wired into the API dependency graph
- Test logging
- Sample record factories
"""

import logging
from collections.abc import Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from backend.app.db.postgres_async import get_pg
from backend.app.main import app
from backend.app.models import ScoredVerse, VectorRecord
from backend.app.routers.vectors import get_retrieval_engine, get_stats_service
from backend.app.services.retrieval import RetrievalEngine, RetrievalSettings
from backend.app.services.stats import StatsService
from backend.app.services.test_utils import FakeEmbedder, FakeVectorStore
from backend.app.utils.catalog import reset_catalog_cache

# ============================================================================
# Logging Configuration for Tests
# ============================================================================


def setup_test_logging():
    """Configure logging for test runs."""
    logger = logging.getLogger("tests")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-25s | %(message)s",
        datefmt="%H:%M:%S",
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


test_logger = setup_test_logging()


# ============================================================================
# Pytest Configuration Hooks
# ============================================================================


def pytest_configure(config):
    """Pytest configuration hook."""
    config.addinivalue_line("markers", "unit: Fast unit tests with mocked dependencies")
    config.addinivalue_line("markers", "integration: Integration tests with real database")


@pytest.fixture(autouse=True)
def _fresh_catalog_cache():
    """Each test sees the packaged catalog, never one cached by a previous test."""
    reset_catalog_cache()
    yield
    reset_catalog_cache()


# ============================================================================
# Mock Database Fixtures (for unit tests)
# ============================================================================


@pytest.fixture
def mock_pg_conn():
    """
    Mock PostgreSQL connection for unit tests.

    Returns an AsyncMock that can be configured for specific test needs.
    """
    mock_conn = AsyncMock()
    mock_conn.fetchval.return_value = 1
    mock_conn.fetch.return_value = []
    mock_conn.fetchrow.return_value = None
    mock_conn.execute.return_value = "OK"
    return mock_conn


@pytest.fixture
def override_db_dependencies(mock_pg_conn, monkeypatch):
    """
    Override database dependencies with mocks for unit testing.

    The pool is never opened; every request receives ``mock_pg_conn``.
    """
    from backend.app import main as app_main

    monkeypatch.setattr(app_main, "init_pool", AsyncMock(return_value=AsyncMock()))
    monkeypatch.setattr(app_main, "close_pool", AsyncMock())

    async def mock_get_pg():
        yield mock_pg_conn

    app.dependency_overrides[get_pg] = mock_get_pg

    yield mock_pg_conn

    app.dependency_overrides.clear()


# ============================================================================
# Service Fakes
# ============================================================================


@pytest.fixture
def fake_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def retrieval_engine(fake_store, fake_embedder) -> RetrievalEngine:
    return RetrievalEngine(fake_store, fake_embedder, RetrievalSettings())


# ============================================================================
# Test Client Fixtures
# ============================================================================


@pytest.fixture
def client(override_db_dependencies) -> Generator[TestClient, None, None]:
    """
    Provide a TestClient for unit testing with mocked dependencies.

    Database connections are mocked, so tests are fast and independent of
    external services.
    """
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def vector_client(override_db_dependencies, retrieval_engine, fake_store):
    """TestClient whose retrieval and stats services run on in-memory fakes."""
    app.dependency_overrides[get_retrieval_engine] = lambda: retrieval_engine
    app.dependency_overrides[get_stats_service] = lambda: StatsService(repository=fake_store)

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


# ============================================================================
# Sample Data Factories
# ============================================================================


def make_scored(
    reference: str,
    score: float,
    *,
    translation: str = "KJV",
    book: str = "JHN",
    book_name: str = "John",
    chapter: int = 3,
    verse: int = 16,
    text: str = "For God so loved the world",
) -> ScoredVerse:
    return ScoredVerse(
        reference=reference,
        translation=translation,
        book=book,
        book_name=book_name,
        chapter=chapter,
        verse=verse,
        text=text,
        score=score,
    )


def make_record(
    reference: str = "John 3:16",
    *,
    translation: str = "KJV",
    embedding: list[float] | None = None,
    themes: list[str] | None = None,
) -> VectorRecord:
    return VectorRecord(
        reference=reference,
        translation=translation,
        book="JHN",
        book_name="John",
        chapter=3,
        verse=16,
        text="For God so loved the world, that he gave his only begotten Son",
        chapter_context="New birth",
        verse_context="Book: John (...)",
        embedding=embedding or [0.1, 0.2, 0.3, 0.4],
        embedding_model="fake-embed",
        testament="new",
        genre="gospel",
        themes=themes if themes is not None else ["love", "salvation"],
    )


def create_mock_record(data: dict):
    """
    Create an asyncpg.Record-like object from a dictionary.

    Supports both dict-style access (record['key']) and attribute access
    (record.key).
    """

    class MockRecord(dict):
        def __init__(self, data):
            super().__init__(data)
            self.__dict__.update(data)

    return MockRecord(data)


# ============================================================================
# Pytest Hooks for Enhanced Reporting
# ============================================================================


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Hook to log test results."""
    outcome = yield
    report = outcome.get_result()

    if report.when == "call":
        if report.passed:
            test_logger.debug(f"[PASS] {item.nodeid}")
        elif report.failed:
            test_logger.error(f"[FAIL] {item.nodeid}")
