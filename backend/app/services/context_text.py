"""Contextual embedding input for a single verse.

The string produced here is both what the embedding model sees and what is
stored on the record as ``verse_context``, so it must be reproducible byte for
byte from the same inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class VerseInput:
    reference: str
    text: str
    chapter: int
    verse_number: int


@dataclass(frozen=True)
class BookContext:
    name: str
    description: str
    chapter_theme: str
    themes: tuple[str, ...] = field(default_factory=tuple)


def build_contextual_text(
    verse: VerseInput,
    book: BookContext,
    prev_verse_text: str | None = None,
    next_verse_text: str | None = None,
) -> str:
    """Assemble the embedding input for ``verse``.

    Args:
        verse: Target verse.
        book: Book name, description, chapter theme and theme list.
        prev_verse_text: Text of the preceding verse in the chapter, if any.
        next_verse_text: Text of the following verse in the chapter, if any.

    Returns:
        Multi-section string; neighbour lines are left out when absent.
    """
    lines = [
        f"Book: {book.name} ({book.description})",
        f"Chapter {verse.chapter}: {book.chapter_theme}",
        f"Themes: {', '.join(book.themes)}",
        "",
        "Context:",
    ]
    if prev_verse_text:
        lines.append(f"[Previous verse] {prev_verse_text}")
    lines.append(f"[{verse.reference}] {verse.text}")
    if next_verse_text:
        lines.append(f"[Next verse] {next_verse_text}")
    lines.extend(["", f"This verse is part of {book.name}, {book.description}."])
    return "\n".join(lines).strip()


def format_reference(book_name: str, chapter: int, verse: int) -> str:
    """Canonical ``"Book C:V"`` reference string."""
    return f"{book_name} {chapter}:{verse}"
