"""Core dataclasses describing index coverage and validation results."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class BookCoverage:
    """Indexed versus expected verse counts for one catalog book."""

    code: str
    name: str
    expected: int
    indexed: int

    @property
    def missing(self) -> int:
        return max(self.expected - self.indexed, 0)

    @property
    def complete(self) -> bool:
        return self.indexed >= self.expected


@dataclass(frozen=True)
class ValidationResult:
    """Outcome container for an individual validation rule."""

    name: str
    passed: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend_errors(self, messages: Iterable[str]) -> ValidationResult:
        """Return a failed copy with additional error messages."""

        return ValidationResult(
            name=self.name,
            passed=False,
            errors=list(self.errors) + list(messages),
            warnings=list(self.warnings),
        )
