"""Tests for the statistics service."""

import pytest

from backend.app.services.stats import StatsService
from backend.app.services.test_utils import FakeVectorStore
from backend.app.utils.catalog import get_book
from backend.tests.conftest import make_record


def _genesis(reference: str, verse: int, translation: str = "KJV"):
    return make_record(reference, translation=translation).model_copy(
        update={"book": "GEN", "book_name": "Genesis", "chapter": 1, "verse": verse}
    )


@pytest.fixture
def stats_store() -> FakeVectorStore:
    store = FakeVectorStore()
    for record in (
        _genesis("Genesis 1:1", 1),
        _genesis("Genesis 1:2", 2),
        _genesis("Genesis 1:1", 1, translation="ASV"),
    ):
        store.records[(record.reference, record.translation)] = record
    return store


@pytest.mark.asyncio
async def test_statistics_counts_by_translation_and_book(stats_store):
    service = StatsService(repository=stats_store)

    stats = await service.statistics()

    assert stats.total_verses == 3
    assert stats.by_translation == {"KJV": 2, "ASV": 1}
    assert stats.by_book == {"Genesis": 3}


@pytest.mark.asyncio
async def test_coverage_uses_catalog_expected_counts(stats_store):
    service = StatsService(stats_store, catalog=[get_book("GEN"), get_book("EXO")])

    coverage = await service.coverage("KJV")

    assert [(c.code, c.expected, c.indexed) for c in coverage] == [
        ("GEN", 1533, 2),
        ("EXO", 1213, 0),
    ]
    assert coverage[1].missing == 1213


def test_repository_is_required():
    with pytest.raises(TypeError):
        StatsService()
