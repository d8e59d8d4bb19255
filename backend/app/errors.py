"""Error taxonomy shared by the indexer, the vector store and the retrieval engine.

Each error carries an :class:`ErrorKind` so callers can decide between
degrading, skipping a unit of work, or aborting without inspecting messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """How a caller is expected to react to an error."""

    DEGRADE = "degrade"
    SKIP = "skip"
    ABORT = "abort"


class ScriptureIndexError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.ABORT

    @property
    def recoverable(self) -> bool:
        return self.kind is not ErrorKind.ABORT


class ProviderError(ScriptureIndexError):
    """The source-text or embedding service failed or returned garbage."""

    kind = ErrorKind.SKIP

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class SearchUnavailableError(ScriptureIndexError):
    """The nearest-neighbour stage of the store cannot serve queries."""

    kind = ErrorKind.DEGRADE


class ValidationError(ScriptureIndexError, ValueError):
    """Input rejected before any side effect (empty query, empty chapter...)."""

    kind = ErrorKind.SKIP


class PersistenceError(ScriptureIndexError):
    """The store or the checkpoint backend is unreachable."""

    kind = ErrorKind.ABORT


__all__ = [
    "ErrorKind",
    "PersistenceError",
    "ProviderError",
    "ScriptureIndexError",
    "SearchUnavailableError",
    "ValidationError",
]
