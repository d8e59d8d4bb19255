"""Loaders for the canonical book catalog and the curated chapter themes."""

from __future__ import annotations

import json
import re
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, Field

from ..models import BookMetadata

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

_VERSE_KEY = re.compile(r"^(\d+):(\d+)(?:-(\d+))?$")


class ChapterTheme(BaseModel):
    """Curated theme and key topics for one chapter."""

    chapter: int = Field(ge=1)
    theme: str
    key_topics: list[str] = Field(default_factory=list)


class BookThemes(BaseModel):
    """Theme file contents for a single book."""

    code: str
    description: str
    chapters: list[ChapterTheme] = Field(default_factory=list)
    verse_themes: dict[str, list[str]] = Field(default_factory=dict)

    def chapter(self, number: int) -> ChapterTheme | None:
        for item in self.chapters:
            if item.chapter == number:
                return item
        return None

    def specific_themes(self, chapter: int, verse: int) -> list[str]:
        """Return verse-specific themes whose key covers ``chapter:verse``.

        Keys are either ``"c:v"`` or a range ``"c:v-w"``; an exact key wins
        over a range that also covers the verse.
        """
        exact = self.verse_themes.get(f"{chapter}:{verse}")
        if exact is not None:
            return list(exact)
        for key, themes in self.verse_themes.items():
            match = _VERSE_KEY.match(key)
            if not match or match.group(3) is None:
                continue
            if int(match.group(1)) == chapter and int(match.group(2)) <= verse <= int(match.group(3)):
                return list(themes)
        return []


class BookContextInfo(BaseModel):
    """Book-level inputs of the contextual text for one chapter."""

    description: str
    chapter_theme: str


_catalog_cache: list[BookMetadata] | None = None
_themes_cache: dict[str, BookThemes | None] = {}
_catalog_lock = Lock()


def load_catalog(path: Path | None = None) -> list[BookMetadata]:
    """Return the book catalog in canonical order, caching the default file."""

    global _catalog_cache

    if path is not None:
        return _read_catalog(path)

    with _catalog_lock:
        if _catalog_cache is None:
            _catalog_cache = _read_catalog(DATA_DIR / "books.json")
        return list(_catalog_cache)


def _read_catalog(path: Path) -> list[BookMetadata]:
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    books = [BookMetadata.model_validate(item) for item in data]
    return sorted(books, key=lambda book: book.order)


def get_book(code: str) -> BookMetadata:
    """Look up a catalog entry by its three-letter code."""

    wanted = code.upper()
    for book in load_catalog():
        if book.code == wanted:
            return book
    raise LookupError(f"Unknown book code: {code}")


def load_book_themes(code: str) -> BookThemes | None:
    """Return curated themes for ``code`` or ``None`` when the book has none."""

    key = code.lower()
    with _catalog_lock:
        if key not in _themes_cache:
            path = DATA_DIR / "themes" / f"{key}.json"
            if path.exists():
                with path.open("r", encoding="utf-8") as handle:
                    _themes_cache[key] = BookThemes.model_validate(json.load(handle))
            else:
                _themes_cache[key] = None
        return _themes_cache[key]


def resolve_book_context(book: BookMetadata, chapter: int) -> BookContextInfo:
    """Description and chapter theme for ``book`` at ``chapter``."""

    themes = load_book_themes(book.code)
    if themes is None:
        return BookContextInfo(
            description=f"The book of {book.name}",
            chapter_theme=f"Chapter {chapter} of {book.name}",
        )
    entry = themes.chapter(chapter)
    return BookContextInfo(
        description=themes.description,
        chapter_theme=entry.theme if entry else f"Chapter {chapter}",
    )


def resolve_verse_themes(book: BookMetadata, chapter: int, verse: int) -> list[str]:
    """Ordered, de-duplicated themes attached to one verse."""

    themes = load_book_themes(book.code)
    if themes is None:
        return list(book.themes)
    entry = themes.chapter(chapter)
    topics = entry.key_topics[:3] if entry else []
    specific = themes.specific_themes(chapter, verse)
    if not specific:
        return list(topics)
    return list(dict.fromkeys([*specific, *topics]))


def reset_catalog_cache() -> None:
    """Drop cached catalog and theme files."""

    global _catalog_cache
    with _catalog_lock:
        _catalog_cache = None
        _themes_cache.clear()
