"""Records handed to the persistence layer for one upload.

Foreign keys that only exist after an earlier persistence stage
(``test_run_id``, ``suite_test_id``, ``execution_id``) are left unset by
the assembler and filled in by the orchestrator as stages complete.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class RunSummaryRecord:
    """One row per upload with aggregate counts and run labels."""

    project_id: str
    suite_id: str
    environment_id: str
    trigger_id: str
    environment: str
    trigger: str
    branch: str
    commit: str
    timestamp: datetime
    total: int
    passed: int
    failed: int
    flaky: int
    skipped: int
    duration: int
    content_hash: str
    wall_clock_duration: int | None = None
    filename: str | None = None
    ci_metadata: dict[str, Any] | None = None
    environment_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class CanonicalTestDefinition:
    """Identity of a test within a project, upserted on ``(project_id, file, name)``."""

    project_id: str
    suite_id: str
    file: str
    name: str

    @property
    def conflict_key(self) -> tuple[str, str, str]:
        return (self.project_id, self.file, self.name)


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one canonical test in one run."""

    file: str
    name: str
    source_test_id: str
    status: str
    duration: int
    retries: int
    error: str | None = None
    error_stack: str | None = None
    screenshots: list[str] = field(default_factory=list)
    worker_index: int | None = None
    started_at: str | None = None
    location: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    test_run_id: str | None = None
    suite_test_id: str | None = None


@dataclass(frozen=True)
class AttemptRecord:
    """One try of an execution, with its externalised or inline step log."""

    retry_index: int
    status: str
    duration: int
    error: str | None = None
    error_stack: str | None = None
    screenshots: list[str] = field(default_factory=list)
    attachments: list[dict[str, str]] = field(default_factory=list)
    steps_url: str | None = None
    steps: list[dict[str, Any]] | None = None
    last_failed_step: dict[str, Any] | None = None
    started_at: str | None = None
    execution_id: str | None = None


@dataclass
class UploadRecord:
    """Everything one upload writes, in persistence order.

    ``attempts`` runs parallel to ``executions``: ``attempts[i]`` belongs
    to ``executions[i]`` and may be empty.
    """

    run_summary: RunSummaryRecord
    canonical_tests: list[CanonicalTestDefinition]
    executions: list[ExecutionRecord]
    attempts: list[list[AttemptRecord]]

    @property
    def attempt_count(self) -> int:
        return sum(len(a) for a in self.attempts)
