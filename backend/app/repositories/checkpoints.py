"""Repository storing indexing checkpoints as JSONB rows."""

from __future__ import annotations

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from ..errors import PersistenceError
from ..services.checkpoint import Checkpoint

CHECKPOINT_DDL = """
CREATE TABLE IF NOT EXISTS indexing_checkpoint (
    run_name    TEXT PRIMARY KEY,
    payload     JSONB       NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


class CheckpointRepository:
    """Checkpoint store keyed by run name; each save is a single atomic upsert."""

    def __init__(self, conn: asyncpg.Connection, run_name: str = "default") -> None:
        self.conn = conn
        self.run_name = run_name

    async def create_table(self) -> None:
        try:
            await self.conn.execute(CHECKPOINT_DDL)
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise PersistenceError(f"Cannot create checkpoint table: {exc}") from exc

    async def load(self) -> Checkpoint | None:
        try:
            raw = await self.conn.fetchval(
                "SELECT payload::text FROM indexing_checkpoint WHERE run_name = $1",
                self.run_name,
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise PersistenceError(f"Cannot read checkpoint '{self.run_name}': {exc}") from exc
        if raw is None:
            return None
        try:
            return Checkpoint.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise PersistenceError(f"Corrupt checkpoint '{self.run_name}': {exc}") from exc

    async def save(self, checkpoint: Checkpoint) -> None:
        try:
            await self.conn.execute(
                """
                INSERT INTO indexing_checkpoint (run_name, payload, updated_at)
                VALUES ($1, $2::text::jsonb, now())
                ON CONFLICT (run_name) DO UPDATE
                SET payload = EXCLUDED.payload, updated_at = now()
                """,
                self.run_name,
                checkpoint.model_dump_json(),
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise PersistenceError(f"Cannot write checkpoint '{self.run_name}': {exc}") from exc
