"""Indexing checkpoint model and its file-backed store."""

from __future__ import annotations

import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import PersistenceError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CheckpointError(BaseModel):
    """A book-level failure recorded during a run."""

    book: str
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Checkpoint(BaseModel):
    """Durable progress of the batch indexer."""

    completed_books: list[str] = Field(default_factory=list)
    last_completed_book: str | None = None
    total_verses_processed: int = Field(0, ge=0)
    start_time: datetime = Field(default_factory=_utcnow)
    last_update_time: datetime = Field(default_factory=_utcnow)
    errors: list[CheckpointError] = Field(default_factory=list)

    def is_completed(self, code: str) -> bool:
        return code in self.completed_books

    def add_verses(self, count: int) -> None:
        self.total_verses_processed += max(0, count)

    def mark_completed(self, code: str) -> None:
        if code not in self.completed_books:
            self.completed_books.append(code)
        self.last_completed_book = code
        self.last_update_time = _utcnow()

    def record_error(self, code: str, message: str) -> CheckpointError:
        entry = CheckpointError(book=code, message=message)
        self.errors.append(entry)
        self.last_update_time = entry.timestamp
        return entry

    def unresolved_errors(self) -> list[CheckpointError]:
        """Errors for books that never completed afterwards."""
        return [e for e in self.errors if e.book not in self.completed_books]


class CheckpointStore(Protocol):
    async def load(self) -> Checkpoint | None: ...

    async def save(self, checkpoint: Checkpoint) -> None: ...


class FileCheckpointStore:
    """JSON checkpoint file, replaced atomically on every save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> Checkpoint | None:
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot read checkpoint {self.path}: {exc}") from exc
        try:
            return Checkpoint.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise PersistenceError(f"Corrupt checkpoint {self.path}: {exc}") from exc

    async def save(self, checkpoint: Checkpoint) -> None:
        payload = checkpoint.model_dump_json(indent=2)
        directory = self.path.parent if str(self.path.parent) else Path(".")
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=directory, delete=False, suffix=".tmp"
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Cannot write checkpoint {self.path}: {exc}") from exc
        logger.debug("checkpoint_saved", extra={"path": str(self.path)})


async def load_or_create(store: CheckpointStore) -> Checkpoint:
    """Return the stored checkpoint, or a fresh one if none exists yet."""

    checkpoint = await store.load()
    if checkpoint is None:
        checkpoint = Checkpoint()
        logger.info("checkpoint_created")
    return checkpoint
