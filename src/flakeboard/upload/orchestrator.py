"""Upload orchestrator: archive bytes in, persisted run (or duplicate) out.

One upload walks a fixed sequence of states::

    RECEIVED -> DECODED -> NORMALIZED -> HASHED -> DUPLICATE_CHECKED
        -> REJECTED (duplicate, terminal)
        -> MATERIALIZED -> PERSISTED (terminal)

FAILED is reachable from any state. Decoding, normalizing and hashing are
synchronous; only collaborator calls are awaited.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from flakeboard.core.exceptions import (
    FlakeboardError,
    LookupFailedError,
    LookupNotFoundError,
    PersistenceError,
    PersistenceStage,
    UploadCancelled,
)
from flakeboard.core.models import ExtractedTest, RunStats
from flakeboard.core.records import UploadRecord
from flakeboard.logging import get_logger, upload_context
from flakeboard.reports.base import ReportArchive
from flakeboard.reports.ci_metadata import UNKNOWN, normalize_environment, resolve_ci_overrides
from flakeboard.reports.hashing import calculate_content_hash
from flakeboard.reports.processor import process_archive
from flakeboard.reports.registry import ReportSourceRegistry
from flakeboard.reports.stats import calculate_run_stats
from flakeboard.storage.repositories import (
    ExistingRun,
    LookupRepository,
    RunRepository,
    StoredRun,
)
from flakeboard.upload.materializer import AttachmentMaterializer
from flakeboard.upload.records import ResolvedIds, assemble_upload

logger = get_logger(__name__)


class UploadState(str, Enum):
    """Pipeline states of a single upload."""

    RECEIVED = "received"
    DECODED = "decoded"
    NORMALIZED = "normalized"
    HASHED = "hashed"
    DUPLICATE_CHECKED = "duplicate_checked"
    REJECTED = "rejected"
    MATERIALIZED = "materialized"
    PERSISTED = "persisted"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class UploadParams:
    """Caller-supplied labels for one upload."""

    environment: str
    trigger: str
    suite_id: str
    branch: str = UNKNOWN
    commit: str = UNKNOWN
    pre_calculated_hash: str | None = None
    filename: str | None = None


@dataclass(frozen=True)
class OrchestratorConfig:
    """Behaviour switches handed in at construction time."""

    # Only runs of the same project count as duplicates
    duplicate_check_scope_project: bool = True


@dataclass
class UploadOutcome:
    """Result of a successful upload or a duplicate no-op.

    For duplicates, ``run_id`` and ``timestamp`` describe the run that was
    already stored.
    """

    kind: OutcomeKind
    run_id: str
    timestamp: datetime
    content_hash: str
    stats: RunStats | None = None
    states: list[UploadState] = field(default_factory=list)

    @property
    def is_duplicate(self) -> bool:
        return self.kind is OutcomeKind.DUPLICATE


class UploadOrchestrator:
    """Sequence decoding, hashing, duplicate detection, materialization and persistence.

    Usage:
        orchestrator = UploadOrchestrator(lookups, runs, AttachmentMaterializer())
        outcome = await orchestrator.process(zip_bytes, UploadParams("dev", "push", suite_id))
        if outcome.is_duplicate:
            ...
    """

    def __init__(
        self,
        lookup_repo: LookupRepository,
        run_repo: RunRepository,
        materializer: AttachmentMaterializer,
        config: OrchestratorConfig | None = None,
        registry: ReportSourceRegistry | None = None,
    ):
        self.lookup_repo = lookup_repo
        self.run_repo = run_repo
        self.materializer = materializer
        self.config = config or OrchestratorConfig()
        self.registry = registry

    async def process(
        self,
        content: bytes,
        params: UploadParams,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadOutcome:
        """Process one uploaded archive.

        Raises:
            ReportProcessingError: For malformed archives; nothing is persisted.
            LookupNotFoundError: When a label does not resolve.
            LookupFailedError: When a lookup fails at the transport level.
            PersistenceError: When a write fails; earlier stages stay committed.
            UploadCancelled: When ``cancel_event`` is set before a write starts.
        """
        states = [UploadState.RECEIVED]
        with upload_context():
            try:
                return await self._process(content, params, states, cancel_event)
            except Exception as e:
                states.append(UploadState.FAILED)
                logger.error(
                    "upload_failed",
                    state=states[-2].value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

    async def _process(
        self,
        content: bytes,
        params: UploadParams,
        states: list[UploadState],
        cancel_event: asyncio.Event | None,
    ) -> UploadOutcome:
        logger.info(
            "upload_received",
            size=len(content),
            filename=params.filename,
            environment=params.environment,
            trigger=params.trigger,
        )
        ids = await self._resolve_ids(params)

        with ReportArchive.open(content) as archive:
            report = process_archive(archive, self.registry)
            states.extend([UploadState.DECODED, UploadState.NORMALIZED])

            overrides = resolve_ci_overrides(
                report.ci_metadata, params.branch, params.environment, params.commit
            )
            if overrides.branch == UNKNOWN:
                logger.warning("branch_unknown", ci_metadata_present=report.ci_metadata is not None)

            content_hash = params.pre_calculated_hash or calculate_content_hash(report.tests)
            states.append(UploadState.HASHED)
            logger.info(
                "content_hashed",
                content_hash=content_hash,
                pre_calculated=params.pre_calculated_hash is not None,
            )

            existing = await self._find_duplicate(content_hash, ids.project_id)
            states.append(UploadState.DUPLICATE_CHECKED)
            if existing is not None:
                states.append(UploadState.REJECTED)
                logger.info("duplicate_detected", content_hash=content_hash, run_id=existing.id)
                return UploadOutcome(
                    kind=OutcomeKind.DUPLICATE,
                    run_id=existing.id,
                    timestamp=existing.timestamp,
                    content_hash=content_hash,
                    states=states,
                )

            screenshot_refs = await self.materializer.materialize_screenshots(
                archive, _screenshot_paths(report.tests)
            )
            steps = await self.materializer.materialize_attempt_steps(report.tests, content_hash)
            states.append(UploadState.MATERIALIZED)

        record = assemble_upload(
            report,
            ids,
            overrides,
            trigger=params.trigger,
            content_hash=content_hash,
            screenshot_refs=screenshot_refs,
            steps=steps,
            filename=params.filename,
        )
        run = await self._persist(record, cancel_event)
        states.append(UploadState.PERSISTED)

        stats = calculate_run_stats(report.tests)
        logger.info(
            "upload_persisted",
            run_id=run.id,
            tests=len(report.tests),
            attempts=record.attempt_count,
            branch=overrides.branch,
            environment=overrides.environment,
        )
        return UploadOutcome(
            kind=OutcomeKind.CREATED,
            run_id=run.id,
            timestamp=run.timestamp,
            content_hash=content_hash,
            stats=stats,
            states=states,
        )

    async def _resolve_ids(self, params: UploadParams) -> ResolvedIds:
        environment_name = normalize_environment(params.environment)
        try:
            environment = await self.lookup_repo.get_environment_by_name(environment_name)
            trigger = await self.lookup_repo.get_trigger_by_name(params.trigger)
            suite = await self.lookup_repo.get_suite_by_id(params.suite_id)
        except FlakeboardError:
            raise
        except Exception as e:
            raise LookupFailedError(f"Lookup failed: {e}") from e

        if environment is None:
            raise LookupNotFoundError("environment", environment_name)
        if trigger is None:
            raise LookupNotFoundError("trigger", params.trigger)
        if suite is None:
            raise LookupNotFoundError("suite", params.suite_id)

        return ResolvedIds(
            project_id=suite.project_id,
            suite_id=suite.id,
            environment_id=environment.id,
            trigger_id=trigger.id,
        )

    async def _find_duplicate(self, content_hash: str, project_id: str) -> ExistingRun | None:
        scope = project_id if self.config.duplicate_check_scope_project else None
        try:
            return await self.run_repo.find_duplicate_by_content_hash(content_hash, scope)
        except Exception as e:  # noqa: BLE001
            # A failed check must not block the upload
            logger.warning("duplicate_check_failed", content_hash=content_hash, error=str(e))
            return None

    async def _persist(self, record: UploadRecord, cancel_event: asyncio.Event | None) -> StoredRun:
        _check_cancelled(cancel_event, PersistenceStage.CREATE_RUN)
        try:
            run = await self.run_repo.create_test_run(record.run_summary)
        except Exception as e:
            raise _persistence_failure(PersistenceStage.CREATE_RUN, e) from e

        stage = PersistenceStage.UPSERT_CANONICAL_TESTS
        _check_cancelled(cancel_event, stage, run.id)
        try:
            canonical = await self.run_repo.upsert_canonical_tests(record.canonical_tests)
        except Exception as e:
            raise _persistence_failure(stage, e, run.id) from e

        suite_test_ids = {(c.file, c.name): c.id for c in canonical}
        missing = [e for e in record.executions if (e.file, e.name) not in suite_test_ids]
        if missing:
            raise _persistence_failure(
                stage, ValueError(f"{len(missing)} canonical tests were not returned"), run.id
            )

        stage = PersistenceStage.INSERT_EXECUTIONS
        _check_cancelled(cancel_event, stage, run.id)
        executions = [
            replace(e, test_run_id=run.id, suite_test_id=suite_test_ids[(e.file, e.name)])
            for e in record.executions
        ]
        try:
            execution_ids = await self.run_repo.insert_executions(executions)
            attempts = [
                replace(attempt, execution_id=execution_id)
                for execution_id, group in zip(execution_ids, record.attempts, strict=True)
                for attempt in group
            ]
        except Exception as e:
            raise _persistence_failure(stage, e, run.id) from e

        if attempts:
            stage = PersistenceStage.INSERT_ATTEMPTS
            _check_cancelled(cancel_event, stage, run.id)
            try:
                await self.run_repo.insert_attempts(attempts)
            except Exception as e:
                raise _persistence_failure(stage, e, run.id) from e

        return run


def _screenshot_paths(tests: list[ExtractedTest]) -> list[str]:
    """Every screenshot path referenced by a test or one of its attempts."""
    paths: list[str] = []
    for test in tests:
        paths.extend(test.screenshots)
        for attempt in test.attempts:
            paths.extend(attempt.screenshots)
    return paths


def _check_cancelled(
    cancel_event: asyncio.Event | None, stage: PersistenceStage, run_id: str | None = None
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.warning("upload_cancelled", stage=stage.value, run_id=run_id)
        raise UploadCancelled(stage, run_id)


def _persistence_failure(
    stage: PersistenceStage, error: Exception, run_id: str | None = None
) -> PersistenceError:
    logger.error("persistence_stage_failed", stage=stage.value, run_id=run_id, error=str(error))
    return PersistenceError(stage, str(error), run_id=run_id)
