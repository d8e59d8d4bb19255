"""Validation helpers for verifying index coverage after batch runs."""

from .models import BookCoverage, ValidationResult
from .validators import (
    build_coverage_report,
    validate_book_coverage,
    validate_checkpoint_errors,
)

__all__ = [
    "BookCoverage",
    "ValidationResult",
    "build_coverage_report",
    "validate_book_coverage",
    "validate_checkpoint_errors",
]
