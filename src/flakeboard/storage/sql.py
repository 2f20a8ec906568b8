"""SQLAlchemy implementations of the persistence collaborators.

Every write method commits, so a failure in a later stage leaves earlier
stages committed. The orchestrator reports the failed stage instead of
attempting a compensating rollback.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from flakeboard.core.records import (
    AttemptRecord,
    CanonicalTestDefinition,
    ExecutionRecord,
    RunSummaryRecord,
)
from flakeboard.logging import get_logger
from flakeboard.reports.stats import parse_timestamp
from flakeboard.storage.models import (
    Environment,
    Suite,
    SuiteTest,
    TestAttempt,
    TestExecution,
    TestRun,
    Trigger,
)
from flakeboard.storage.repositories import (
    ExistingRun,
    NamedEntity,
    StoredCanonicalTest,
    StoredRun,
    SuiteInfo,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _as_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


def _as_datetime(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None


class SqlLookupRepository:
    """Resolve environments, triggers and suites."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_environment_by_name(self, name: str) -> NamedEntity | None:
        result = await self.session.execute(select(Environment).where(Environment.name == name))
        row = result.scalar_one_or_none()
        return NamedEntity(id=str(row.id), name=row.name) if row else None

    async def get_trigger_by_name(self, name: str) -> NamedEntity | None:
        result = await self.session.execute(select(Trigger).where(Trigger.name == name))
        row = result.scalar_one_or_none()
        return NamedEntity(id=str(row.id), name=row.name) if row else None

    async def get_suite_by_id(self, suite_id: str) -> SuiteInfo | None:
        suite_uuid = _as_uuid(suite_id)
        if suite_uuid is None:
            # Not a UUID, so it cannot match any suite
            return None
        suite = await self.session.get(Suite, suite_uuid)
        return SuiteInfo(id=str(suite.id), project_id=str(suite.project_id)) if suite else None


class SqlRunRepository:
    """Write upload records to PostgreSQL."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_duplicate_by_content_hash(
        self, content_hash: str, project_id: str | None = None
    ) -> ExistingRun | None:
        query = select(TestRun.id, TestRun.timestamp).where(TestRun.content_hash == content_hash)
        if project_id is not None:
            query = query.where(TestRun.project_id == uuid.UUID(project_id))
        result = await self.session.execute(query.order_by(TestRun.created_at).limit(1))
        row = result.first()
        return ExistingRun(id=str(row.id), timestamp=row.timestamp) if row else None

    async def create_test_run(self, summary: RunSummaryRecord) -> StoredRun:
        run = TestRun(
            project_id=uuid.UUID(summary.project_id),
            suite_id=uuid.UUID(summary.suite_id),
            environment_id=uuid.UUID(summary.environment_id),
            trigger_id=uuid.UUID(summary.trigger_id),
            branch=summary.branch,
            commit=summary.commit,
            timestamp=summary.timestamp,
            total=summary.total,
            passed=summary.passed,
            failed=summary.failed,
            flaky=summary.flaky,
            skipped=summary.skipped,
            duration=summary.duration,
            wall_clock_duration=summary.wall_clock_duration,
            content_hash=summary.content_hash,
            filename=summary.filename,
            ci_metadata=summary.ci_metadata,
            environment_data=summary.environment_data,
        )
        self.session.add(run)
        await self.session.commit()
        await self.session.refresh(run)
        return StoredRun(id=str(run.id), timestamp=run.timestamp)

    async def upsert_canonical_tests(
        self, definitions: Sequence[CanonicalTestDefinition]
    ) -> list[StoredCanonicalTest]:
        if not definitions:
            return []

        statement = pg_insert(SuiteTest).values(
            [
                {
                    "id": uuid.uuid4(),
                    "project_id": uuid.UUID(d.project_id),
                    "suite_id": uuid.UUID(d.suite_id),
                    "file": d.file,
                    "name": d.name,
                }
                for d in definitions
            ]
        )
        statement = statement.on_conflict_do_update(
            index_elements=[SuiteTest.project_id, SuiteTest.file, SuiteTest.name],
            set_={"suite_id": statement.excluded.suite_id},
        ).returning(SuiteTest.id, SuiteTest.file, SuiteTest.name)

        result = await self.session.execute(statement)
        rows = [StoredCanonicalTest(id=str(r.id), file=r.file, name=r.name) for r in result]
        await self.session.commit()
        return rows

    async def insert_executions(self, records: Sequence[ExecutionRecord]) -> list[str]:
        executions = [
            TestExecution(
                id=uuid.uuid4(),
                test_run_id=uuid.UUID(r.test_run_id),
                suite_test_id=uuid.UUID(r.suite_test_id),
                source_test_id=r.source_test_id,
                status=r.status,
                duration=r.duration,
                retries=r.retries,
                error=r.error,
                error_stack=r.error_stack,
                screenshots=list(r.screenshots),
                worker_index=r.worker_index,
                started_at=_as_datetime(r.started_at),
                location=r.location,
                test_metadata=r.metadata,
            )
            for r in records
        ]
        self.session.add_all(executions)
        await self.session.commit()
        return [str(e.id) for e in executions]

    async def insert_attempts(self, records: Sequence[AttemptRecord]) -> None:
        self.session.add_all(
            [
                TestAttempt(
                    execution_id=uuid.UUID(r.execution_id),
                    retry_index=r.retry_index,
                    status=r.status,
                    duration=r.duration,
                    error=r.error,
                    error_stack=r.error_stack,
                    screenshots=list(r.screenshots),
                    attachments=list(r.attachments),
                    steps_url=r.steps_url,
                    steps=r.steps,
                    last_failed_step=r.last_failed_step,
                    started_at=_as_datetime(r.started_at),
                )
                for r in records
            ]
        )
        await self.session.commit()
        logger.debug("attempts_inserted", count=len(records))
