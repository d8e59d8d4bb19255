"""Dagster jobs for scripture indexing."""

from __future__ import annotations

from dagster import job

from .ops import (
    coverage_validation_op,
    create_indexes_op,
    run_indexing_op,
    standalone_validation_op,
)


@job(description="Build indexes, run the resumable batch indexer, then validate coverage.")
def scripture_indexing_job() -> None:
    summary = run_indexing_op(start=create_indexes_op())
    coverage_validation_op(summary)


@job(description="Validate stored vectors against the catalog and the checkpoint.")
def coverage_validation_job() -> None:
    standalone_validation_op()
