"""Tests for the retrieval engine: vector search, lexical fallback, similar verses."""

import pytest

from backend.app.config import Settings
from backend.app.errors import PersistenceError, ValidationError
from backend.app.services.pipeline import TextSearchStage, VectorSearchStage
from backend.app.services.retrieval import RetrievalEngine, RetrievalSettings
from backend.app.services.test_utils import FakeEmbedder, FakeVectorStore
from backend.tests.conftest import make_record, make_scored


class TestSearch:
    @pytest.mark.asyncio
    async def test_vector_hits_filtered_and_truncated_in_order(self, retrieval_engine, fake_store):
        fake_store.vector_hits = [
            make_scored("John 3:16", 0.95),
            make_scored("1 John 4:8", 0.9),
            make_scored("Romans 5:8", 0.85),
            make_scored("Luke 6:27", 0.6),
        ]

        outcome = await retrieval_engine.search_with_outcome("love", limit=2, min_score=0.7)

        assert outcome.strategy == "vector"
        assert outcome.degraded is False
        assert [h.reference for h in outcome.results] == ["John 3:16", "1 John 4:8"]

    @pytest.mark.asyncio
    async def test_high_threshold_returns_empty_list(self, retrieval_engine, fake_store):
        fake_store.vector_hits = [make_scored(f"Ref {i}", s) for i, s in enumerate((0.6, 0.5, 0.4))]

        results = await retrieval_engine.search("love", min_score=0.9)

        assert results == []

    @pytest.mark.asyncio
    async def test_candidates_oversampled(self, retrieval_engine, fake_store):
        await retrieval_engine.search("love", limit=3)

        stage = fake_store.pipelines[0].search
        assert isinstance(stage, VectorSearchStage)
        assert stage.num_candidates == 30

    @pytest.mark.asyncio
    async def test_default_threshold_from_settings(self, fake_store, fake_embedder):
        engine = RetrievalEngine(fake_store, fake_embedder, RetrievalSettings(default_min_score=0.8))
        fake_store.vector_hits = [make_scored("A 1:1", 0.85), make_scored("A 1:2", 0.75)]

        results = await engine.search("love")

        assert [h.reference for h in results] == ["A 1:1"]

    @pytest.mark.asyncio
    async def test_filters_reach_match_stage(self, retrieval_engine, fake_store):
        fake_store.vector_hits = [
            make_scored("John 3:16", 0.9),
            make_scored("Genesis 1:1", 0.9, book="GEN", book_name="Genesis", chapter=1, verse=1),
        ]

        results = await retrieval_engine.search("love", book="GEN", translation="KJV", min_score=0)

        match = fake_store.pipelines[0].match
        assert match.book == "GEN"
        assert match.translation == "KJV"
        assert [h.reference for h in results] == ["Genesis 1:1"]

    @pytest.mark.asyncio
    async def test_include_context_flows_to_project_stage(self, retrieval_engine, fake_store):
        await retrieval_engine.search("love", include_context=True)

        assert fake_store.pipelines[0].project.include_context is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query_rejected(self, retrieval_engine, fake_embedder, query):
        with pytest.raises(ValidationError):
            await retrieval_engine.search(query)
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_non_positive_limit_rejected(self, retrieval_engine):
        with pytest.raises(ValidationError):
            await retrieval_engine.search("love", limit=0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chapter", [0, -3])
    async def test_invalid_chapter_filter_rejected(self, retrieval_engine, fake_embedder, chapter):
        with pytest.raises(ValidationError, match="Invalid search filters"):
            await retrieval_engine.search("love", chapter=chapter)
        assert fake_embedder.calls == []


class TestLexicalFallback:
    @pytest.mark.asyncio
    async def test_vector_unavailable_falls_back(self, retrieval_engine, fake_store):
        fake_store.vector_unavailable = True
        fake_store.text_hits = [make_scored("1 Corinthians 13:4", 0.8), make_scored("X 1:1", 0.3)]

        outcome = await retrieval_engine.search_with_outcome("love", min_score=0.5)

        assert outcome.strategy == "lexical"
        assert outcome.degraded is True
        assert [h.reference for h in outcome.results] == ["1 Corinthians 13:4"]
        fallback = fake_store.pipelines[1].search
        assert isinstance(fallback, TextSearchStage)
        assert fallback.query == "love"
        assert fallback.score_divisor == 0.2

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back(self, fake_store):
        engine = RetrievalEngine(fake_store, FakeEmbedder(fail_always=True))
        fake_store.text_hits = [make_scored("John 3:16", 1.0)]

        outcome = await engine.search_with_outcome("love")

        assert outcome.strategy == "lexical"
        assert len(fake_store.pipelines) == 1

    @pytest.mark.asyncio
    async def test_fallback_keeps_filters(self, retrieval_engine, fake_store):
        fake_store.vector_unavailable = True

        await retrieval_engine.search("love", chapter=13, translation="KJV")

        match = fake_store.pipelines[-1].match
        assert match.chapter == 13
        assert match.translation == "KJV"

    @pytest.mark.asyncio
    async def test_unreachable_store_is_not_masked(self, fake_embedder):
        class DownStore(FakeVectorStore):
            async def execute(self, pipeline):
                raise PersistenceError("store unreachable")

        engine = RetrievalEngine(DownStore(), fake_embedder)

        with pytest.raises(PersistenceError):
            await engine.search("love")

    def test_divisor_is_configurable(self):
        config = RetrievalSettings.from_settings(
            Settings(LEXICAL_SCORE_DIVISOR=0.5, DEFAULT_MIN_SCORE=0.6)
        )

        assert config.lexical_score_divisor == 0.5
        assert config.default_min_score == 0.6


class TestFindSimilar:
    @pytest.mark.asyncio
    async def test_excludes_source_verse(self, retrieval_engine, fake_store):
        fake_store.records[("John 3:16", "KJV")] = make_record()
        fake_store.vector_hits = [
            make_scored("John 3:16", 1.0),
            make_scored("1 John 4:9", 0.9),
            make_scored("Romans 5:8", 0.88),
        ]

        results = await retrieval_engine.find_similar("John 3:16", "KJV", limit=5)

        assert [h.reference for h in results] == ["1 John 4:9", "Romans 5:8"]
        stage = fake_store.pipelines[0].search
        assert stage.query_vector == [0.1, 0.2, 0.3, 0.4]
        assert stage.num_candidates == 60

    @pytest.mark.asyncio
    async def test_same_reference_other_translation_is_kept(self, retrieval_engine, fake_store):
        fake_store.records[("John 3:16", "KJV")] = make_record()
        fake_store.vector_hits = [make_scored("John 3:16", 0.97, translation="ASV")]

        results = await retrieval_engine.find_similar("John 3:16", "KJV")

        assert [(h.reference, h.translation) for h in results] == [("John 3:16", "ASV")]

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self, retrieval_engine, fake_store):
        fake_store.records[("John 3:16", "KJV")] = make_record()
        fake_store.vector_hits = [make_scored(f"Ref {i}", 0.9 - i / 100) for i in range(10)]

        results = await retrieval_engine.find_similar("John 3:16", "KJV", limit=3)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_unknown_reference(self, retrieval_engine):
        with pytest.raises(LookupError):
            await retrieval_engine.find_similar("Nowhere 1:1", "KJV")

    @pytest.mark.asyncio
    async def test_unavailable_index_returns_empty(self, retrieval_engine, fake_store):
        fake_store.records[("John 3:16", "KJV")] = make_record()
        fake_store.vector_unavailable = True

        assert await retrieval_engine.find_similar("John 3:16", "KJV") == []
