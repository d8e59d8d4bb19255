"""Dagster schedules for scripture indexing jobs."""

from __future__ import annotations

from dagster import DefaultScheduleStatus, ScheduleDefinition

from .jobs import coverage_validation_job, scripture_indexing_job

scripture_indexing_schedule = ScheduleDefinition(
    name="scripture_indexing_nightly",
    cron_schedule="0 1 * * *",
    job=scripture_indexing_job,
    execution_timezone="UTC",
    default_status=DefaultScheduleStatus.STOPPED,
)


coverage_validation_schedule = ScheduleDefinition(
    name="coverage_validation_hourly",
    cron_schedule="15 * * * *",
    job=coverage_validation_job,
    execution_timezone="UTC",
    default_status=DefaultScheduleStatus.RUNNING,
)
