"""Dagster definitions for scripture indexing."""

from __future__ import annotations

from dagster import Definitions

from .jobs import coverage_validation_job, scripture_indexing_job
from .resources import build_resource_instances
from .schedules import coverage_validation_schedule, scripture_indexing_schedule

resource_instances = build_resource_instances()


defs = Definitions(
    jobs=[scripture_indexing_job, coverage_validation_job],
    schedules=[scripture_indexing_schedule, coverage_validation_schedule],
    resources=resource_instances,
)

__all__ = ["defs"]
