"""Dagster resource wrapping the scripture indexing runtime."""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import asdict

from dagster import ConfigurableResource, InitResourceContext

from backend.app.config import Settings
from backend.app.services import runner
from backend.app.services.indexer import IndexingRunSummary
from backend.app.services.runner import ValidationReport


def validation_report_json(report: ValidationReport) -> str:
    """Serialize a validation report for logging or dashboards."""

    payload = {
        "translation": report.translation,
        "passed": report.passed,
        "results": {
            result.name: {
                "passed": result.passed,
                "errors": result.errors,
                "warnings": result.warnings,
            }
            for result in report.results
        },
        "incomplete_books": [c.code for c in report.coverage if not c.complete],
    }
    return json.dumps(payload, sort_keys=True, indent=2)


class ScriptureIndexResource(ConfigurableResource):
    """Runs index builds, batch indexing and coverage validation.

    Empty fields fall back to the application settings, so the resource works
    unconfigured inside the Docker deployment.
    """

    database_url: str = os.getenv("DATABASE_URL", "")
    translation: str = os.getenv("TRANSLATION", "")
    pacing: bool = True
    allow_missing_ratio: float = 0.0

    def settings(self) -> Settings:
        overrides: dict[str, object] = {}
        if self.database_url:
            overrides["DATABASE_URL"] = self.database_url
        if self.translation:
            overrides["TRANSLATION"] = self.translation
        return Settings(**overrides)

    def create_indexes(self) -> None:
        asyncio.run(runner.create_indexes(self.settings()))

    def run_indexing(self, only_books: list[str] | None = None) -> dict[str, object]:
        summary: IndexingRunSummary = asyncio.run(
            runner.run_indexing(self.settings(), only_books=only_books, pacing=self.pacing)
        )
        return asdict(summary)

    def coverage_report(self) -> ValidationReport:
        return asyncio.run(
            runner.validate_index(
                self.settings(), allow_missing_ratio=self.allow_missing_ratio
            )
        )


def build_resource_instances(context: InitResourceContext | None = None) -> dict[str, object]:
    """Return instantiated resources for Dagster Definitions."""

    return {"scripture_index": ScriptureIndexResource()}
