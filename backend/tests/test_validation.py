"""Unit tests for post-indexing validation utilities."""

from __future__ import annotations

import pytest

from backend.app.services.checkpoint import Checkpoint
from backend.app.utils.catalog import get_book
from backend.validation import (
    BookCoverage,
    build_coverage_report,
    validate_book_coverage,
    validate_checkpoint_errors,
)


@pytest.fixture()
def catalog():
    return [get_book("GEN"), get_book("OBA"), get_book("PHM")]


def test_coverage_report_pairs_catalog_with_counts(catalog):
    report = build_coverage_report(catalog, {"GEN": 1500, "PHM": 25})

    assert [(c.code, c.expected, c.indexed) for c in report] == [
        ("GEN", 1533, 1500),
        ("OBA", 21, 0),
        ("PHM", 25, 25),
    ]
    assert report[0].missing == 33
    assert report[2].complete is True


def test_completed_book_without_rows_is_error(catalog):
    report = build_coverage_report(catalog, {"GEN": 1533})

    result = validate_book_coverage(report, completed_books=["GEN", "OBA"])

    assert result.passed is False
    assert result.errors == ["Book 'OBA' is marked completed but has no indexed verses"]


def test_shortfall_is_warning(catalog):
    report = build_coverage_report(catalog, {"GEN": 1500})

    result = validate_book_coverage(report, completed_books=["GEN"])

    assert result.passed is True
    assert len(result.warnings) == 1
    assert "GEN" in result.warnings[0]


def test_shortfall_within_tolerance(catalog):
    report = build_coverage_report(catalog, {"GEN": 1500})

    result = validate_book_coverage(report, completed_books=["GEN"], allow_missing_ratio=0.05)

    assert result.warnings == []


def test_incomplete_books_are_not_judged(catalog):
    report = build_coverage_report(catalog, {})

    assert validate_book_coverage(report, completed_books=[]).passed is True


def test_unresolved_checkpoint_errors():
    checkpoint = Checkpoint(completed_books=["GEN"])
    checkpoint.record_error("EXO", "timeout")

    result = validate_checkpoint_errors(checkpoint)

    assert result.passed is False
    assert "EXO" in result.errors[0]


def test_resolved_checkpoint_errors_warn():
    checkpoint = Checkpoint()
    checkpoint.record_error("EXO", "timeout")
    checkpoint.mark_completed("EXO")

    result = validate_checkpoint_errors(checkpoint)

    assert result.passed is True
    assert result.warnings == ["1 earlier book error(s) were resolved by later runs"]


def test_extend_errors_fails_result():
    result = validate_checkpoint_errors(Checkpoint()).extend_errors(["extra"])

    assert result.passed is False
    assert result.errors == ["extra"]


def test_book_coverage_missing_never_negative():
    assert BookCoverage(code="X", name="X", expected=10, indexed=12).missing == 0
