"""Assemble persistence records from a processed report."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from flakeboard.core.models import CIOverrides, ExtractedTest, ProcessedReport
from flakeboard.core.records import (
    AttemptRecord,
    CanonicalTestDefinition,
    ExecutionRecord,
    RunSummaryRecord,
    UploadRecord,
)
from flakeboard.reports.stats import (
    calculate_run_stats,
    parse_timestamp,
    total_duration,
    wall_clock_duration,
)
from flakeboard.upload.materializer import MaterializedSteps


@dataclass(frozen=True)
class ResolvedIds:
    """Identifiers resolved from the caller's upload labels."""

    project_id: str
    suite_id: str
    environment_id: str
    trigger_id: str


def resolve_screenshots(paths: Sequence[str], references: Mapping[str, str]) -> list[str]:
    """Rewrite archive paths to stored references, dropping unresolved ones."""
    return [references[path] for path in paths if path in references]


def run_timestamp(execution_time: str | None) -> datetime:
    """Report start time when available, otherwise now (UTC)."""
    parsed = parse_timestamp(execution_time) if execution_time else None
    return parsed or datetime.now(UTC)


def build_run_summary(
    report: ProcessedReport,
    ids: ResolvedIds,
    overrides: CIOverrides,
    trigger: str,
    content_hash: str,
    filename: str | None = None,
) -> RunSummaryRecord:
    stats = calculate_run_stats(report.tests)
    return RunSummaryRecord(
        project_id=ids.project_id,
        suite_id=ids.suite_id,
        environment_id=ids.environment_id,
        trigger_id=ids.trigger_id,
        environment=overrides.environment,
        trigger=trigger,
        branch=overrides.branch,
        commit=overrides.commit,
        timestamp=run_timestamp(report.execution_time),
        total=stats.total,
        passed=stats.passed,
        failed=stats.failed,
        flaky=stats.flaky,
        skipped=stats.skipped,
        duration=total_duration(report.tests),
        wall_clock_duration=wall_clock_duration(report.tests),
        content_hash=content_hash,
        filename=filename,
        ci_metadata=report.ci_metadata,
        environment_data=report.environment_data,
    )


def build_canonical_definitions(
    tests: Sequence[ExtractedTest], project_id: str, suite_id: str
) -> list[CanonicalTestDefinition]:
    """One definition per ``(file, name)``, in first-seen order.

    Multi-project reports repeat a test once per browser; an upsert batch
    must not contain the same conflict key twice.
    """
    seen: dict[tuple[str, str], CanonicalTestDefinition] = {}
    for test in tests:
        if test.natural_key not in seen:
            seen[test.natural_key] = CanonicalTestDefinition(
                project_id=project_id, suite_id=suite_id, file=test.file, name=test.name
            )
    return list(seen.values())


def needs_attempt_records(test: ExtractedTest) -> bool:
    """Retried tests and single attempts with details get attempt rows."""
    if len(test.attempts) > 1:
        return True
    return any(
        attempt.steps or attempt.error or attempt.error_stack or attempt.attachments
        for attempt in test.attempts
    )


def build_execution_record(
    test: ExtractedTest, screenshot_refs: Mapping[str, str]
) -> ExecutionRecord:
    return ExecutionRecord(
        file=test.file,
        name=test.name,
        source_test_id=test.id,
        status=test.status.value,
        duration=test.duration,
        retries=max(len(test.attempts) - 1, 0),
        error=test.error,
        error_stack=test.error_stack,
        screenshots=resolve_screenshots(test.screenshots, screenshot_refs),
        worker_index=test.worker_index,
        started_at=test.started_at,
        location=test.location.to_dict() if test.location else None,
        metadata=test.metadata.to_dict(),
    )


def build_attempt_records(
    test: ExtractedTest,
    screenshot_refs: Mapping[str, str],
    steps: Sequence[MaterializedSteps],
) -> list[AttemptRecord]:
    """Attempt rows for one test; ``steps`` is parallel to ``test.attempts``."""
    if not needs_attempt_records(test):
        return []

    records = []
    for attempt, materialized in zip(test.attempts, steps, strict=True):
        failed_step = materialized.last_failed_step
        records.append(
            AttemptRecord(
                retry_index=attempt.retry_index,
                status=attempt.status.value,
                duration=attempt.duration_ms,
                error=attempt.error,
                error_stack=attempt.error_stack,
                screenshots=resolve_screenshots(attempt.screenshots, screenshot_refs),
                attachments=[a.to_dict() for a in attempt.attachments],
                steps_url=materialized.steps_url,
                steps=materialized.inline_steps,
                last_failed_step=failed_step.to_dict() if failed_step else None,
                started_at=attempt.start_time,
            )
        )
    return records


def assemble_upload(
    report: ProcessedReport,
    ids: ResolvedIds,
    overrides: CIOverrides,
    trigger: str,
    content_hash: str,
    screenshot_refs: Mapping[str, str],
    steps: Sequence[Sequence[MaterializedSteps]],
    filename: str | None = None,
) -> UploadRecord:
    """Build every record of an upload from materialized artifacts."""
    return UploadRecord(
        run_summary=build_run_summary(report, ids, overrides, trigger, content_hash, filename),
        canonical_tests=build_canonical_definitions(report.tests, ids.project_id, ids.suite_id),
        executions=[build_execution_record(test, screenshot_refs) for test in report.tests],
        attempts=[
            build_attempt_records(test, screenshot_refs, test_steps)
            for test, test_steps in zip(report.tests, steps, strict=True)
        ],
    )
