from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Testament = Literal["old", "new"]
Genre = Literal["law", "history", "wisdom", "prophecy", "gospel", "epistle", "apocalyptic"]

# ============================================================================
# Catalog Models - Canonical book list and source-provider payloads
# ============================================================================


class BookMetadata(BaseModel):
    """One entry of the 66-book canonical catalog."""

    code: str
    name: str
    testament: Testament
    genre: Genre
    author: str
    chapters: int = Field(ge=1)
    verses: int = Field(ge=1)
    order: int = Field(ge=1)
    section: str
    themes: list[str] = Field(default_factory=list)


class SourceBook(BaseModel):
    """Book entry as returned by the source-text provider for an edition."""

    id: str
    abbreviation: str | None = None
    name: str | None = None


class SourceChapter(BaseModel):
    """Raw chapter payload from the source-text provider."""

    id: str
    content: str = ""


class ParsedVerse(BaseModel):
    """A single verse unit extracted from raw chapter text."""

    number: int = Field(ge=1)
    text: str


# ============================================================================
# Vector Models - Stored records and retrieval results
# ============================================================================


def build_searchable_text(reference: str, text: str, themes: list[str]) -> str:
    """Lower-cased haystack used by the lexical fallback."""
    return f"{reference} {text} {' '.join(themes)}".lower()


class VectorRecord(BaseModel):
    """One embedded verse for one translation, keyed by (reference, translation)."""

    reference: str
    translation: str
    book: str
    book_name: str
    chapter: int = Field(ge=1)
    verse: int = Field(ge=1)
    text: str
    chapter_context: str
    verse_context: str
    embedding: list[float]
    embedding_model: str
    embedding_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    testament: Testament
    genre: Genre
    themes: list[str] = Field(default_factory=list)
    searchable_text: str | None = None

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, value: list[float]) -> list[float]:
        """Reject empty vectors."""
        if not value:
            raise ValueError("embedding must not be empty")
        return value

    @model_validator(mode="after")
    def derive_searchable_text(self) -> "VectorRecord":
        if self.searchable_text is None:
            self.searchable_text = build_searchable_text(self.reference, self.text, self.themes)
        return self


class ScoredVerse(BaseModel):
    """Retrieval hit with its similarity score in [0, 1]."""

    reference: str
    translation: str
    book: str | None = None
    book_name: str | None = None
    chapter: int | None = None
    verse: int | None = None
    text: str
    themes: list[str] = Field(default_factory=list)
    score: float
    verse_context: str | None = None
    chapter_context: str | None = None


class BatchUpsertResult(BaseModel):
    """Per-batch upsert tally; failures never roll back successful records."""

    upserted: int = 0
    failed: int = 0
    failed_references: list[str] = Field(default_factory=list)


class CorpusStatistics(BaseModel):
    """Record counts for the whole store."""

    total_verses: int
    by_translation: dict[str, int] = Field(default_factory=dict)
    by_book: dict[str, int] = Field(default_factory=dict)


# ============================================================================
# API Models - Request and response schemas
# ============================================================================


class SearchRequest(BaseModel):
    """Semantic search request body."""

    query: str
    limit: int = Field(10, ge=1, le=50)
    book: str | None = None
    chapter: int | None = Field(None, ge=1)
    translation: str | None = None
    min_score: float = Field(0.7, ge=0.0, le=1.0)
    include_context: bool = False

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        """Ensure the search query contains non-whitespace characters."""
        if not value or not value.strip():
            raise ValueError("Query must not be empty")
        return value


class SearchResponse(BaseModel):
    """Search results plus the strategy that produced them."""

    results: list[ScoredVerse]
    strategy: Literal["vector", "lexical"]
    degraded: bool = False


class BookCoverageOut(BaseModel):
    """Indexed versus expected verse counts for one book."""

    code: str
    name: str
    expected: int
    indexed: int
    missing: int
