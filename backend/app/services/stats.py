"""Statistics service layer."""

from __future__ import annotations

from collections.abc import Sequence

from backend.validation import BookCoverage, build_coverage_report

from ..models import BookMetadata, CorpusStatistics
from ..repositories.vectors import VectorRepository
from ..utils.catalog import load_catalog


class StatsService:
    """Corpus statistics and per-book coverage of the vector store."""

    def __init__(
        self,
        repository: VectorRepository,
        catalog: Sequence[BookMetadata] | None = None,
    ) -> None:
        self._repo = repository
        self._catalog = list(catalog) if catalog is not None else load_catalog()

    async def statistics(self) -> CorpusStatistics:
        """Return total, per-translation and per-book record counts."""
        return await self._repo.get_statistics()

    async def coverage(self, translation: str) -> list[BookCoverage]:
        """Return indexed versus expected verse counts for every catalog book."""
        counts = await self._repo.count_by_book(translation)
        return build_coverage_report(self._catalog, counts)
