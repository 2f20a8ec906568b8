"""Persistence collaborators required by the upload orchestrator.

Lookups return None for "not found" and raise for transport errors, so
the orchestrator can tell a bad label from a broken database.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from flakeboard.core.records import (
    AttemptRecord,
    CanonicalTestDefinition,
    ExecutionRecord,
    RunSummaryRecord,
)


@dataclass(frozen=True)
class NamedEntity:
    id: str
    name: str


@dataclass(frozen=True)
class SuiteInfo:
    id: str
    project_id: str


@dataclass(frozen=True)
class ExistingRun:
    """A committed run found by content hash."""

    id: str
    timestamp: datetime


@dataclass(frozen=True)
class StoredRun:
    id: str
    timestamp: datetime


@dataclass(frozen=True)
class StoredCanonicalTest:
    id: str
    file: str
    name: str


class LookupRepository(Protocol):
    """Resolves upload labels to identifiers."""

    async def get_environment_by_name(self, name: str) -> NamedEntity | None: ...

    async def get_trigger_by_name(self, name: str) -> NamedEntity | None: ...

    async def get_suite_by_id(self, suite_id: str) -> SuiteInfo | None: ...


class RunRepository(Protocol):
    """Writes runs, canonical tests, executions and attempts."""

    async def find_duplicate_by_content_hash(
        self, content_hash: str, project_id: str | None = None
    ) -> ExistingRun | None:
        """Return an existing run with this hash, optionally within one project."""
        ...

    async def create_test_run(self, summary: RunSummaryRecord) -> StoredRun: ...

    async def upsert_canonical_tests(
        self, definitions: Sequence[CanonicalTestDefinition]
    ) -> list[StoredCanonicalTest]:
        """Insert or update on ``(project_id, file, name)`` and return every row."""
        ...

    async def insert_executions(self, records: Sequence[ExecutionRecord]) -> list[str]:
        """Insert executions and return their ids in input order."""
        ...

    async def insert_attempts(self, records: Sequence[AttemptRecord]) -> None: ...
