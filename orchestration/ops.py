"""Reusable Dagster ops for scripture indexing."""

from datetime import timedelta

from dagster import Failure, In, Nothing, OpExecutionContext, Out, RetryPolicy, op

from .resources import validation_report_json

DEFAULT_RETRY_POLICY = RetryPolicy(max_retries=3, delay=timedelta(minutes=5).total_seconds())


@op(
    required_resource_keys={"scripture_index"},
    out=Out(Nothing),
)
def create_indexes_op(context: OpExecutionContext) -> None:
    """Ensure the unique key, lookup, full-text and HNSW indexes exist."""

    context.resources.scripture_index.create_indexes()
    context.log.info("Vector indexes ready")


@op(
    required_resource_keys={"scripture_index"},
    retry_policy=DEFAULT_RETRY_POLICY,
    ins={"start": In(Nothing)},
    out=Out(dict, description="Indexing run summary"),
)
def run_indexing_op(context: OpExecutionContext) -> dict[str, object]:
    """Index every book not yet completed in the checkpoint."""

    summary = context.resources.scripture_index.run_indexing()
    context.log.info(
        "Indexing finished: completed=%s failed=%s verses=%s",
        summary["books_completed"],
        summary["books_failed"],
        summary["verses_indexed"],
    )
    for code in summary["books_failed"]:
        context.log.error("Book %s failed; it will be retried on the next run", code)
    return summary


@op(
    required_resource_keys={"scripture_index"},
    ins={"summary": In(dict)},
    out=Out(dict, description="Coverage validation results"),
)
def coverage_validation_op(
    context: OpExecutionContext, summary: dict[str, object]
) -> dict[str, object]:
    """Check completed books against stored vectors after an indexing run."""

    return _validate(context)


@op(
    required_resource_keys={"scripture_index"},
    out=Out(dict, description="Coverage validation results"),
)
def standalone_validation_op(context: OpExecutionContext) -> dict[str, object]:
    """Coverage validation without a preceding indexing run."""

    return _validate(context)


def _validate(context: OpExecutionContext) -> dict[str, object]:
    report = context.resources.scripture_index.coverage_report()
    for result in report.results:
        if result.passed:
            context.log.info("Validation '%s' passed", result.name)
        else:
            context.log.error(
                "Validation '%s' failed: errors=%s warnings=%s",
                result.name,
                result.errors,
                result.warnings,
            )
        for warning in result.warnings:
            context.log.warning("Validation warning: %s", warning)

    if not report.passed:
        raise Failure(
            description="Index validation failed",
            metadata={"report": validation_report_json(report)},
        )
    return {result.name: result.passed for result in report.results}
