"""Canonical records produced by the report ingestion pipeline.

Everything in this module is framework-neutral: the decoder turns
Playwright's JSON shapes into these dataclasses, and the upload
orchestrator turns them into persistence records. None of them are
mutated after the content hash of an upload has been computed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ExecutionStatus(str, Enum):
    """Aggregate status of one test within one upload."""

    PASSED = "passed"
    FAILED = "failed"
    FLAKY = "flaky"
    SKIPPED = "skipped"
    TIMED_OUT = "timedOut"


class AttemptStatus(str, Enum):
    """Status of a single execution attempt."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    SKIPPED = "skipped"


class ReportShape(Enum):
    """Shape of a raw JSON document found in an archive."""

    FRAGMENT = "fragment"  # HTML report per-file document with a flat `tests` array
    FULL_REPORT = "full_report"  # JSON reporter output with nested `suites`


@dataclass(frozen=True)
class RawReportDocument:
    """One JSON document pulled out of an archive, not yet decoded."""

    source: str
    text: str
    shape: ReportShape


@dataclass(frozen=True)
class SourceLocation:
    """Position of a test declaration in its spec file."""

    file: str
    line: int
    column: int

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass
class StepRecord:
    """One node of an attempt's execution step tree."""

    title: str
    duration: int = 0
    error: str | None = None
    category: str | None = None
    start_time: str | None = None
    steps: list[StepRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape stored in the step log."""
        data: dict[str, Any] = {"title": self.title, "duration": self.duration}
        if self.category is not None:
            data["category"] = self.category
        if self.start_time is not None:
            data["startTime"] = self.start_time
        if self.error is not None:
            data["error"] = self.error
        if self.steps:
            data["steps"] = [s.to_dict() for s in self.steps]
        return data


@dataclass(frozen=True)
class FailedStep:
    """Compact summary of the step that broke an attempt."""

    title: str
    duration: int
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "duration": self.duration, "error": self.error}


@dataclass(frozen=True)
class InlineAttachment:
    """Non-image attachment carried inline in the report."""

    name: str
    content_type: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "contentType": self.content_type, "content": self.content}


@dataclass
class ExtractedAttempt:
    """One execution attempt of one test."""

    retry_index: int
    status: AttemptStatus
    duration_ms: int
    error: str | None = None
    error_stack: str | None = None
    screenshots: list[str] = field(default_factory=list)
    attachments: list[InlineAttachment] = field(default_factory=list)
    steps: list[StepRecord] | None = None
    start_time: str | None = None


@dataclass
class ExecutionMetadata:
    """Descriptive labels attached to a test."""

    browser: str | None = None
    tags: list[str] = field(default_factory=list)
    annotations: list[dict[str, Any]] = field(default_factory=list)
    epic: str | None = None
    labels: list[dict[str, str]] | None = None
    parameters: list[dict[str, str]] | None = None
    description: str | None = None
    description_html: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, dropping unset optional fields."""
        data: dict[str, Any] = {
            "browser": self.browser,
            "tags": self.tags,
            "annotations": self.annotations,
        }
        optional = {
            "epic": self.epic,
            "labels": self.labels,
            "parameters": self.parameters,
            "description": self.description,
            "descriptionHtml": self.description_html,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class ExtractedTest:
    """Canonical test definition plus its outcome for a single upload.

    ``duration`` is the sum of every attempt's duration (total compute
    spent), not the wall time of the last try.
    """

    id: str
    name: str
    file: str
    status: ExecutionStatus
    duration: int
    attempts: list[ExtractedAttempt] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    error: str | None = None
    error_stack: str | None = None
    worker_index: int | None = None
    started_at: str | None = None
    location: SourceLocation | None = None
    metadata: ExecutionMetadata = field(default_factory=ExecutionMetadata)

    @property
    def natural_key(self) -> tuple[str, str]:
        """Return the ``(file, name)`` pair identifying the test in a project."""
        return (self.file, self.name)


@dataclass
class ProcessedReport:
    """Decoded and normalized content of one uploaded archive."""

    tests: list[ExtractedTest] = field(default_factory=list)
    ci_metadata: dict[str, Any] | None = None
    execution_time: str | None = None
    environment_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class CIOverrides:
    """Run labels after applying CI metadata."""

    branch: str
    environment: str
    commit: str = "unknown"


@dataclass(frozen=True)
class RunStats:
    """Aggregate counts for a run summary."""

    total: int
    passed: int
    failed: int
    flaky: int
    skipped: int
