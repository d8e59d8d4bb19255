"""Tests for checkpoint state and its file and PostgreSQL stores."""

import json

import asyncpg
import pytest

from backend.app.errors import PersistenceError
from backend.app.repositories.checkpoints import CheckpointRepository
from backend.app.services.checkpoint import Checkpoint, FileCheckpointStore, load_or_create
from backend.app.services.test_utils import InMemoryCheckpointStore


class TestCheckpoint:
    def test_mark_completed_is_idempotent(self):
        checkpoint = Checkpoint()

        checkpoint.mark_completed("GEN")
        checkpoint.mark_completed("GEN")

        assert checkpoint.completed_books == ["GEN"]
        assert checkpoint.last_completed_book == "GEN"

    def test_add_verses_ignores_negative_counts(self):
        checkpoint = Checkpoint()

        checkpoint.add_verses(10)
        checkpoint.add_verses(-3)

        assert checkpoint.total_verses_processed == 10

    def test_errors_resolved_by_later_completion(self):
        checkpoint = Checkpoint()
        checkpoint.record_error("EXO", "timeout")
        checkpoint.record_error("LEV", "timeout")

        checkpoint.mark_completed("EXO")

        assert [e.book for e in checkpoint.unresolved_errors()] == ["LEV"]


class TestFileCheckpointStore:
    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "progress.json")

        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "state" / "progress.json")
        checkpoint = Checkpoint()
        checkpoint.mark_completed("GEN")
        checkpoint.add_verses(1533)

        await store.save(checkpoint)
        loaded = await store.load()

        assert loaded.completed_books == ["GEN"]
        assert loaded.total_verses_processed == 1533
        assert json.loads((tmp_path / "state" / "progress.json").read_text())["completed_books"] == [
            "GEN"
        ]

    @pytest.mark.asyncio
    async def test_save_leaves_no_temp_files(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "progress.json")

        await store.save(Checkpoint())
        await store.save(Checkpoint(completed_books=["GEN"]))

        assert [p.name for p in tmp_path.iterdir()] == ["progress.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "progress.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError, match="Corrupt checkpoint"):
            await FileCheckpointStore(path).load()

    @pytest.mark.asyncio
    async def test_load_or_create_fresh(self):
        checkpoint = await load_or_create(InMemoryCheckpointStore())

        assert checkpoint.completed_books == []
        assert checkpoint.total_verses_processed == 0


class TestCheckpointRepository:
    @pytest.mark.asyncio
    async def test_save_upserts_json_payload(self, mock_pg_conn):
        checkpoint = Checkpoint(completed_books=["GEN", "EXO"])

        await CheckpointRepository(mock_pg_conn, run_name="kjv").save(checkpoint)

        sql, run_name, payload = mock_pg_conn.execute.await_args.args
        assert "ON CONFLICT (run_name) DO UPDATE" in sql
        assert run_name == "kjv"
        assert json.loads(payload)["completed_books"] == ["GEN", "EXO"]

    @pytest.mark.asyncio
    async def test_load_round_trips(self, mock_pg_conn):
        mock_pg_conn.fetchval.return_value = Checkpoint(completed_books=["GEN"]).model_dump_json()

        loaded = await CheckpointRepository(mock_pg_conn).load()

        assert loaded.completed_books == ["GEN"]

    @pytest.mark.asyncio
    async def test_load_missing_row(self, mock_pg_conn):
        mock_pg_conn.fetchval.return_value = None

        assert await CheckpointRepository(mock_pg_conn).load() is None

    @pytest.mark.asyncio
    async def test_write_failure(self, mock_pg_conn):
        mock_pg_conn.execute.side_effect = asyncpg.exceptions.UndefinedTableError("missing")

        with pytest.raises(PersistenceError):
            await CheckpointRepository(mock_pg_conn).save(Checkpoint())
