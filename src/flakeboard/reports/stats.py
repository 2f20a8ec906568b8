"""Aggregate statistics for a run summary."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from flakeboard.core.models import ExecutionStatus, ExtractedTest, RunStats


def calculate_run_stats(tests: Sequence[ExtractedTest]) -> RunStats:
    """Count tests per status; ``total`` leaves skipped tests out."""
    counts = {status: 0 for status in ExecutionStatus}
    for test in tests:
        counts[test.status] += 1
    return RunStats(
        total=len(tests) - counts[ExecutionStatus.SKIPPED],
        passed=counts[ExecutionStatus.PASSED],
        failed=counts[ExecutionStatus.FAILED],
        flaky=counts[ExecutionStatus.FLAKY],
        skipped=counts[ExecutionStatus.SKIPPED],
    )


def total_duration(tests: Sequence[ExtractedTest]) -> int:
    return sum(test.duration for test in tests)


def format_duration(duration_ms: int) -> str:
    """Format milliseconds as ``"Xm Ys"``."""
    minutes, remainder = divmod(duration_ms, 60_000)
    return f"{minutes}m {remainder // 1000}s"


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def wall_clock_duration(tests: Sequence[ExtractedTest]) -> int | None:
    """Milliseconds from the earliest test start to the latest test end.

    Accounts for parallel workers. Tests without a parseable start time are
    ignored; returns None when no test has one.
    """
    spans = []
    for test in tests:
        if not test.started_at or test.duration < 0:
            continue
        started = parse_timestamp(test.started_at)
        if started is None:
            continue
        start_ms = started.timestamp() * 1000
        spans.append((start_ms, start_ms + test.duration))

    if not spans:
        return None
    return round(max(end for _, end in spans) - min(start for start, _ in spans))
