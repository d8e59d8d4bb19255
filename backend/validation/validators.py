"""Validation routines run against the vector store after indexing."""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence

from backend.app.models import BookMetadata
from backend.app.services.checkpoint import Checkpoint

from .models import BookCoverage, ValidationResult


def build_coverage_report(
    catalog: Sequence[BookMetadata],
    indexed_by_book: Mapping[str, int],
) -> list[BookCoverage]:
    """Pair every catalog book with its indexed verse count, in canonical order."""

    return [
        BookCoverage(
            code=book.code,
            name=book.name,
            expected=book.verses,
            indexed=int(indexed_by_book.get(book.code, 0)),
        )
        for book in catalog
    ]


def validate_book_coverage(
    coverage: Sequence[BookCoverage],
    completed_books: Collection[str],
    allow_missing_ratio: float = 0.0,
) -> ValidationResult:
    """Ensure every book the checkpoint calls completed actually has vectors.

    A completed book with zero rows is an error. A completed book whose row
    count falls short of the catalog's verse count by more than
    ``allow_missing_ratio`` is a warning, since editions differ in versification.
    """

    errors = []
    warnings = []
    completed = set(completed_books)
    for item in coverage:
        if item.code not in completed:
            continue
        if item.indexed == 0:
            errors.append(f"Book '{item.code}' is marked completed but has no indexed verses")
            continue
        ratio = item.missing / item.expected if item.expected else 0.0
        if ratio > allow_missing_ratio:
            warnings.append(
                f"Book '{item.code}' has {item.indexed}/{item.expected} verses indexed "
                f"({ratio:.2%} missing)"
            )
    return ValidationResult(
        name="book_coverage",
        passed=not errors,
        errors=errors,
        warnings=warnings,
    )


def validate_checkpoint_errors(checkpoint: Checkpoint) -> ValidationResult:
    """Fail while any book-level error has not been cleared by a later completion."""

    unresolved = checkpoint.unresolved_errors()
    errors = [f"Book '{e.book}' failed at {e.timestamp.isoformat()}: {e.message}" for e in unresolved]
    warnings = []
    resolved = len(checkpoint.errors) - len(unresolved)
    if resolved:
        warnings.append(f"{resolved} earlier book error(s) were resolved by later runs")
    return ValidationResult(
        name="checkpoint_errors",
        passed=not errors,
        errors=errors,
        warnings=warnings,
    )
