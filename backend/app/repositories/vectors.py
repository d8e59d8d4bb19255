"""Repository for the pgvector-backed verse vector table."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import asyncpg

from ..config import Settings
from ..errors import PersistenceError, SearchUnavailableError, ValidationError
from ..models import BatchUpsertResult, CorpusStatistics, ScoredVerse, VectorRecord
from ..services.pipeline import SearchPipeline, VectorSearchStage
from ..utils.logging import get_logger
from ..utils.metrics import QueryTimer

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

# Errors meaning the store itself is gone, as opposed to a bad statement.
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.AdminShutdownError,
    asyncpg.exceptions.CrashShutdownError,
)

_RESULT_COLUMNS = (
    "reference",
    "translation",
    "book",
    "book_name",
    "chapter",
    "verse",
    "text",
    "themes",
)
_CONTEXT_COLUMNS = ("verse_context", "chapter_context")

_UPSERT_COLUMNS = (
    "reference",
    "translation",
    "book",
    "book_name",
    "chapter",
    "verse",
    "text",
    "chapter_context",
    "verse_context",
    "embedding",
    "embedding_model",
    "embedding_date",
    "testament",
    "genre",
    "themes",
    "searchable_text",
)


def _vec_literal(vec: Sequence[float], precision: int = 6) -> str:
    fmt = f"{{:.{precision}f}}"
    return "[" + ",".join(fmt.format(x) for x in vec) + "]"


@contextmanager
def _translate_errors(operation: str, *, degrade: bool = False) -> Iterator[None]:
    """Map asyncpg failures onto the domain error taxonomy."""
    try:
        yield
    except _CONNECTION_ERRORS as exc:
        raise PersistenceError(f"{operation}: store unreachable ({exc})") from exc
    except asyncpg.PostgresError as exc:
        if degrade:
            raise SearchUnavailableError(f"{operation}: {exc}") from exc
        raise PersistenceError(f"{operation}: {exc}") from exc


def schema_statements(table: str = "scripture_vector", dim: int = 768) -> list[str]:
    """DDL for the vector table (indexes are created separately)."""

    _check_identifier(table)
    return [
        "CREATE EXTENSION IF NOT EXISTS vector",
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id               BIGSERIAL PRIMARY KEY,
            reference        TEXT        NOT NULL,
            translation      TEXT        NOT NULL,
            book             TEXT        NOT NULL,
            book_name        TEXT        NOT NULL,
            chapter          INTEGER     NOT NULL CHECK (chapter >= 1),
            verse            INTEGER     NOT NULL CHECK (verse >= 1),
            text             TEXT        NOT NULL,
            chapter_context  TEXT        NOT NULL,
            verse_context    TEXT        NOT NULL,
            embedding        vector({int(dim)}) NOT NULL,
            embedding_model  TEXT        NOT NULL,
            embedding_date   TIMESTAMPTZ NOT NULL DEFAULT now(),
            testament        TEXT        NOT NULL CHECK (testament IN ('old', 'new')),
            genre            TEXT        NOT NULL,
            themes           TEXT[]      NOT NULL DEFAULT '{{}}',
            searchable_text  TEXT        NOT NULL
        )
        """,
    ]


def index_statements(table: str = "scripture_vector") -> list[str]:
    """Uniqueness, lookup, full-text and ANN indexes for the vector table."""

    _check_identifier(table)
    statements = [
        f"CREATE UNIQUE INDEX IF NOT EXISTS {table}_reference_translation_key "
        f"ON {table} (reference, translation)",
    ]
    for column in ("book", "chapter", "translation", "testament", "genre"):
        statements.append(f"CREATE INDEX IF NOT EXISTS {table}_{column}_idx ON {table} ({column})")
    statements.append(
        f"CREATE INDEX IF NOT EXISTS {table}_searchable_text_fts "
        f"ON {table} USING GIN (to_tsvector('english', searchable_text))"
    )
    statements.append(
        f"CREATE INDEX IF NOT EXISTS {table}_embedding_hnsw "
        f"ON {table} USING hnsw (embedding vector_cosine_ops)"
    )
    return statements


def _check_identifier(name: str) -> None:
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid table name: {name!r}")


class VectorRepository:
    """Data access for verse vectors: keyed upserts, index management, ANN and text search."""

    def __init__(
        self,
        conn: asyncpg.Connection,
        *,
        table: str = "scripture_vector",
        dim: int = 768,
    ) -> None:
        _check_identifier(table)
        self.conn = conn
        self.table = table
        self.dim = dim

    @classmethod
    def from_settings(cls, conn: asyncpg.Connection, config: Settings) -> VectorRepository:
        return cls(conn, table=config.VECTOR_TABLE, dim=config.EMBEDDING_DIM)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def create_schema(self) -> None:
        with _translate_errors("create_schema"):
            for stmt in schema_statements(self.table, self.dim):
                await self.conn.execute(stmt)

    async def create_indexes(self) -> None:
        """Create the unique key, lookup indexes, FTS index and HNSW index (idempotent)."""

        with _translate_errors("create_indexes"):
            for stmt in index_statements(self.table):
                await self.conn.execute(stmt)
        logger.info("vector_indexes_ready", extra={"table": self.table})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert_sql(self) -> str:
        placeholders = []
        for idx, column in enumerate(_UPSERT_COLUMNS, start=1):
            placeholders.append(f"${idx}::text::vector" if column == "embedding" else f"${idx}")
        updates = ", ".join(
            f"{column} = EXCLUDED.{column}"
            for column in _UPSERT_COLUMNS
            if column not in ("reference", "translation")
        )
        return f"""
            INSERT INTO {self.table} ({", ".join(_UPSERT_COLUMNS)})
            VALUES ({", ".join(placeholders)})
            ON CONFLICT (reference, translation) DO UPDATE SET {updates}
        """

    def _upsert_args(self, record: VectorRecord) -> list[Any]:
        if len(record.embedding) != self.dim:
            raise ValidationError(
                f"Embedding for {record.reference} has {len(record.embedding)} dims, "
                f"expected {self.dim}"
            )
        values = record.model_dump()
        values["embedding"] = _vec_literal(record.embedding)
        return [values[column] for column in _UPSERT_COLUMNS]

    async def upsert_one(self, record: VectorRecord) -> None:
        """Insert or replace the row keyed by ``(reference, translation)``."""

        args = self._upsert_args(record)
        with QueryTimer("vector_upsert"), _translate_errors("upsert_one"):
            await self.conn.execute(self._upsert_sql(), *args)

    async def upsert_batch(self, records: Sequence[VectorRecord]) -> BatchUpsertResult:
        """Upsert a batch in one ``executemany`` round trip.

        ``executemany`` is atomic, so when the server rejects any row nothing
        is written and the batch is replayed row by row: rejected records are
        counted and logged without affecting the others. A lost connection
        aborts the batch with :class:`PersistenceError`.
        """

        result = BatchUpsertResult()
        accepted: list[tuple[VectorRecord, list[Any]]] = []
        for record in records:
            try:
                accepted.append((record, self._upsert_args(record)))
            except ValidationError as exc:
                _reject(result, record, exc)
        if not accepted:
            return result

        sql = self._upsert_sql()
        try:
            with QueryTimer("vector_upsert_batch"):
                await self.conn.executemany(sql, [args for _, args in accepted])
        except _CONNECTION_ERRORS as exc:
            raise PersistenceError(f"upsert_batch: store unreachable ({exc})") from exc
        except asyncpg.PostgresError as exc:
            logger.warning(
                "vector_batch_replayed", extra={"records": len(accepted), "error": str(exc)}
            )
        else:
            result.upserted += len(accepted)
            return result

        for record, args in accepted:
            try:
                with QueryTimer("vector_upsert"):
                    await self.conn.execute(sql, *args)
            except _CONNECTION_ERRORS as exc:
                raise PersistenceError(f"upsert_batch: store unreachable ({exc})") from exc
            except asyncpg.PostgresError as exc:
                _reject(result, record, exc)
            else:
                result.upserted += 1
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_record(self, reference: str, translation: str) -> VectorRecord | None:
        sql = f"""
            SELECT {", ".join(c for c in _UPSERT_COLUMNS if c != "embedding")},
                   embedding::text AS embedding
            FROM {self.table}
            WHERE reference = $1 AND translation = $2
        """
        with QueryTimer("vector_get"), _translate_errors("get_record"):
            row = await self.conn.fetchrow(sql, reference, translation)
        if row is None:
            return None
        data = dict(row)
        data["embedding"] = json.loads(data["embedding"])
        data["themes"] = list(data.get("themes") or [])
        return VectorRecord.model_validate(data)

    async def get_statistics(self) -> CorpusStatistics:
        """Total rows plus counts by translation and by book name."""

        with QueryTimer("vector_stats"), _translate_errors("get_statistics"):
            total = await self.conn.fetchval(f"SELECT count(*) FROM {self.table}")
            by_translation = await self.conn.fetch(
                f"""
                SELECT translation AS key, count(*) AS n
                FROM {self.table}
                GROUP BY translation
                ORDER BY translation
                """
            )
            by_book = await self.conn.fetch(
                f"""
                SELECT book_name AS key, count(*) AS n
                FROM {self.table}
                GROUP BY book_name
                ORDER BY book_name
                """
            )
        return CorpusStatistics(
            total_verses=int(total or 0),
            by_translation={r["key"]: int(r["n"]) for r in by_translation},
            by_book={r["key"]: int(r["n"]) for r in by_book},
        )

    async def count_by_book(self, translation: str) -> dict[str, int]:
        """Indexed verse counts per book code for one translation."""

        with QueryTimer("vector_count_by_book"), _translate_errors("count_by_book"):
            rows = await self.conn.fetch(
                f"""
                SELECT book, count(*) AS n
                FROM {self.table}
                WHERE translation = $1
                GROUP BY book
                """,
                translation,
            )
        return {r["book"]: int(r["n"]) for r in rows}

    async def execute(self, pipeline: SearchPipeline) -> list[ScoredVerse]:
        """Run a validated pipeline and return hits in the search stage's order.

        Raises:
            SearchUnavailableError: The vector stage failed on a reachable store.
            PersistenceError: The store is unreachable, or a text stage failed.
        """

        sql, params = self._compile(pipeline)
        is_vector = isinstance(pipeline.search, VectorSearchStage)
        label = "vector_search" if is_vector else "text_search"
        with QueryTimer(label), _translate_errors(label, degrade=is_vector):
            rows = await self.conn.fetch(sql, *params)

        include_context = pipeline.project.include_context
        hits = []
        for row in rows:
            data = dict(row)
            data["themes"] = list(data.get("themes") or [])
            data["score"] = float(data["score"])
            if not include_context:
                data.pop("verse_context", None)
                data.pop("chapter_context", None)
            hits.append(ScoredVerse.model_validate(data))
        return hits

    def _compile(self, pipeline: SearchPipeline) -> tuple[str, list[Any]]:
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        where: list[str] = []
        search = pipeline.search
        if isinstance(search, VectorSearchStage):
            if len(search.query_vector) != self.dim:
                raise ValidationError(
                    f"Query vector has {len(search.query_vector)} dims, expected {self.dim}"
                )
            vec = bind(_vec_literal(search.query_vector))
            distance = f"embedding <=> {vec}::text::vector"
            score_sql = f"1 - ({distance})"
            order_sql = f"{distance} ASC"
        else:
            query = bind(search.query)
            divisor = bind(float(search.score_divisor))
            tsv = "to_tsvector('english', searchable_text)"
            tsq = f"plainto_tsquery('english', {query})"
            rank = f"ts_rank_cd({tsv}, {tsq})"
            where.append(f"{tsv} @@ {tsq}")
            score_sql = f"LEAST(1.0::float8, {rank}::float8 / {divisor}::float8)"
            order_sql = f"{rank} DESC"

        match = pipeline.match
        if match is not None:
            if match.book is not None:
                where.append(f"book = {bind(match.book)}")
            if match.chapter is not None:
                where.append(f"chapter = {bind(match.chapter)}")
            if match.translation is not None:
                where.append(f"translation = {bind(match.translation)}")
            if match.exclude_reference is not None:
                where.append(
                    f"NOT (reference = {bind(match.exclude_reference)} "
                    f"AND translation = {bind(match.exclude_translation)})"
                )

        columns = list(_RESULT_COLUMNS)
        if pipeline.project.include_context:
            columns.extend(_CONTEXT_COLUMNS)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        limit = bind(search.num_candidates)
        sql = f"""
            SELECT {", ".join(columns)}, ({score_sql})::float8 AS score
            FROM {self.table}
            {where_sql}
            ORDER BY {order_sql}
            LIMIT {limit}
        """
        return sql, params


def _reject(result: BatchUpsertResult, record: VectorRecord, exc: Exception) -> None:
    result.failed += 1
    result.failed_references.append(record.reference)
    logger.warning(
        "vector_upsert_rejected",
        extra={
            "reference": record.reference,
            "translation": record.translation,
            "error": str(exc),
        },
    )
