"""Tests for the book catalog and curated theme lookups."""

import pytest

from backend.app.utils.catalog import (
    BookThemes,
    get_book,
    load_book_themes,
    load_catalog,
    resolve_book_context,
    resolve_verse_themes,
)


class TestCatalog:
    def test_has_sixty_six_books_in_canonical_order(self):
        catalog = load_catalog()

        assert len(catalog) == 66
        assert catalog[0].code == "GEN"
        assert catalog[-1].code == "REV"
        assert [b.order for b in catalog] == list(range(1, 67))

    def test_codes_are_unique(self):
        codes = [b.code for b in load_catalog()]

        assert len(set(codes)) == 66

    def test_testament_split(self):
        catalog = load_catalog()

        assert sum(1 for b in catalog if b.testament == "old") == 39
        assert sum(1 for b in catalog if b.testament == "new") == 27

    def test_get_book_is_case_insensitive(self):
        assert get_book("jhn").name == "John"

    def test_get_book_unknown_code(self):
        with pytest.raises(LookupError):
            get_book("XYZ")


class TestThemes:
    def test_themed_book_context(self):
        info = resolve_book_context(get_book("GEN"), 1)

        assert info.description == "The Book of Beginnings"
        assert info.chapter_theme == "The Creation of the World"

    def test_unthemed_book_context(self):
        info = resolve_book_context(get_book("JHN"), 3)

        assert info.description == "The book of John"
        assert info.chapter_theme == "Chapter 3 of John"

    def test_unthemed_book_has_no_theme_file(self):
        assert load_book_themes("JHN") is None

    def test_unthemed_verse_uses_book_themes(self):
        book = get_book("JHN")

        assert resolve_verse_themes(book, 3, 16) == book.themes

    def test_specific_verse_themes_come_first(self):
        themes = resolve_verse_themes(get_book("GEN"), 1, 1)

        assert themes[0] == "in the beginning"
        assert "creation" in themes
        assert len(themes) == len(set(themes))

    def test_verse_without_specific_themes_gets_key_topics(self):
        themes = resolve_verse_themes(get_book("GEN"), 1, 5)

        assert themes == ["creation", "God speaks", "light and darkness"]


class TestBookThemes:
    def _themes(self) -> BookThemes:
        return BookThemes(
            code="GEN",
            description="d",
            verse_themes={"1:26-27": ["image of God"], "1:27": ["male and female"]},
        )

    def test_range_key_covers_each_verse(self):
        themes = self._themes()

        assert themes.specific_themes(1, 26) == ["image of God"]
        assert themes.specific_themes(1, 28) == []

    def test_exact_key_wins_over_range(self):
        assert self._themes().specific_themes(1, 27) == ["male and female"]

    def test_missing_chapter_returns_none(self):
        assert self._themes().chapter(99) is None
