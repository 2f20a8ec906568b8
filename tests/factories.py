"""Test data factories for flakeboard tests.

This module provides factory functions for building Playwright report
archives in memory, canonical records, and in-memory collaborators.
Use these instead of defining fixtures locally in each test file.

Usage:
    from tests.factories import make_fragment_test, make_html_report_zip, make_result

    def test_something():
        content = make_html_report_zip({"a.json": make_fragment([make_fragment_test()])})
"""

from __future__ import annotations

import base64
import io
import json
import uuid
import zipfile
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from flakeboard.core.exceptions import BlobStorageError, PersistenceStage
from flakeboard.core.models import (
    AttemptStatus,
    ExecutionStatus,
    ExtractedAttempt,
    ExtractedTest,
    StepRecord,
)
from flakeboard.core.records import (
    AttemptRecord,
    CanonicalTestDefinition,
    ExecutionRecord,
    RunSummaryRecord,
)
from flakeboard.storage.repositories import (
    ExistingRun,
    NamedEntity,
    StoredCanonicalTest,
    StoredRun,
    SuiteInfo,
)

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kg"
    "AAAABJRU5ErkJggg=="
)

PROJECT_ID = "11111111-1111-1111-1111-111111111111"
SUITE_ID = "22222222-2222-2222-2222-222222222222"
ENVIRONMENT_ID = "33333333-3333-3333-3333-333333333333"
TRIGGER_ID = "44444444-4444-4444-4444-444444444444"


# =============================================================================
# ARCHIVES
# =============================================================================


def make_zip(files: Mapping[str, bytes | str]) -> bytes:
    """Create ZIP bytes from a mapping of entry name to content."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def make_corrupt_zip(files: Mapping[str, bytes | str], corrupt: str) -> bytes:
    """Create stored (uncompressed) ZIP bytes whose ``corrupt`` entry fails its CRC check.

    The first byte of that entry's payload is flipped in place, so the
    central directory stays valid and only reading the entry fails.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    raw = bytearray(buffer.getvalue())
    with zipfile.ZipFile(io.BytesIO(bytes(raw))) as zf:
        info = zf.getinfo(corrupt)
    # local header: 30 fixed bytes, then file name and extra field
    name_len = int.from_bytes(raw[info.header_offset + 26 : info.header_offset + 28], "little")
    extra_len = int.from_bytes(raw[info.header_offset + 28 : info.header_offset + 30], "little")
    payload_start = info.header_offset + 30 + name_len + extra_len
    raw[payload_start] ^= 0xFF
    return bytes(raw)


def make_result(
    status: str = "passed",
    duration: float = 100,
    retry: int | None = 0,
    error: dict[str, Any] | None = None,
    errors: list[Any] | None = None,
    attachments: list[dict[str, Any]] | None = None,
    steps: list[dict[str, Any]] | None = None,
    start_time: Any = "2024-01-15T10:00:00.000Z",
    worker_index: int | None = 0,
) -> dict[str, Any]:
    """Create one Playwright ``results[]`` entry."""
    result: dict[str, Any] = {"status": status, "duration": duration, "startTime": start_time}
    if retry is not None:
        result["retry"] = retry
    if worker_index is not None:
        result["workerIndex"] = worker_index
    if error is not None:
        result["error"] = error
    if errors is not None:
        result["errors"] = errors
    if attachments is not None:
        result["attachments"] = attachments
    if steps is not None:
        result["steps"] = steps
    return result


def make_fragment_test(
    title: str = "should log in",
    file: str = "tests/login.spec.ts",
    outcome: str = "expected",
    results: list[dict[str, Any]] | None = None,
    test_id: str | None = None,
    project_name: str = "chromium",
    annotations: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Create one entry of an HTML report fragment's ``tests`` array."""
    return {
        "testId": test_id or f"{file}-{title}".replace(" ", "-"),
        "title": title,
        "projectName": project_name,
        "location": {"file": file, "line": 10, "column": 5},
        "outcome": outcome,
        "duration": sum(r.get("duration", 0) for r in results or []),
        "annotations": annotations or [],
        "results": results if results is not None else [make_result()],
    }


def make_fragment(tests: list[dict[str, Any]], file_name: str = "tests/login.spec.ts") -> dict:
    return {"fileId": uuid.uuid4().hex[:20], "fileName": file_name, "tests": tests}


def make_embedded_report(
    fragments: Mapping[str, dict[str, Any] | str],
    report_json: dict[str, Any] | None = None,
) -> bytes:
    """Create the ZIP embedded in ``index.html``."""
    files: dict[str, str] = {
        name: body if isinstance(body, str) else json.dumps(body)
        for name, body in fragments.items()
    }
    if report_json is not None:
        files["report.json"] = json.dumps(report_json)
    return make_zip(files)


def make_index_html(embedded: bytes) -> str:
    payload = base64.b64encode(embedded).decode("ascii")
    return (
        "<!DOCTYPE html><html><head><title>Playwright Test Report</title></head><body>"
        f'<script>window.playwrightReportBase64 = "data:application/zip;base64,{payload}";'
        "</script></body></html>"
    )


def make_html_report_zip(
    fragments: Mapping[str, dict[str, Any] | str],
    report_json: dict[str, Any] | None = None,
    extra_files: Mapping[str, bytes | str] | None = None,
    root: str = "",
) -> bytes:
    """Create an uploaded HTML report archive.

    Args:
        fragments: Embedded JSON documents by name (dicts are serialized).
        report_json: Embedded ``report.json`` with run metadata.
        extra_files: Additional outer-archive entries relative to the root
            (screenshots, ``environment.json``, ``.dat`` files).
        root: Wrapper directory such as ``"playwright-report/"``.
    """
    files: dict[str, bytes | str] = {
        f"{root}index.html": make_index_html(make_embedded_report(fragments, report_json))
    }
    for name, content in (extra_files or {}).items():
        files[f"{root}{name}"] = content
    return make_zip(files)


def make_spec(
    title: str = "should log in",
    results: list[dict[str, Any]] | None = None,
    file: str | None = None,
    outcome: str = "expected",
) -> dict[str, Any]:
    """Create a flat legacy spec carrying results directly."""
    spec: dict[str, Any] = {
        "title": title,
        "id": f"spec-{title}".replace(" ", "-"),
        "outcome": outcome,
        "results": results if results is not None else [make_result()],
    }
    if file is not None:
        spec["file"] = file
    return spec


def make_reporter_spec(
    title: str = "should log in",
    file: str = "tests/login.spec.ts",
    projects: Sequence[tuple[str, str, list[dict[str, Any]]]] = (("chromium", "expected", []),),
) -> dict[str, Any]:
    """Create a JSON-reporter spec with one ``tests[]`` entry per project."""
    return {
        "title": title,
        "id": f"spec-{title}".replace(" ", "-"),
        "file": file,
        "line": 3,
        "column": 1,
        "tests": [
            {
                "projectName": project,
                "status": status,
                "results": results or [make_result()],
            }
            for project, status, results in projects
        ],
    }


def make_suite(
    title: str = "suite",
    file: str | None = "tests/login.spec.ts",
    specs: list[dict[str, Any]] | None = None,
    suites: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    suite: dict[str, Any] = {"title": title, "specs": specs or [], "suites": suites or []}
    if file is not None:
        suite["file"] = file
    return suite


def make_json_report(
    suites: list[dict[str, Any]],
    ci: dict[str, Any] | None = None,
    start_time: Any = None,
) -> dict[str, Any]:
    report: dict[str, Any] = {"config": {}, "suites": suites, "stats": {}}
    if ci is not None:
        report["config"]["metadata"] = {"ci": ci}
    if start_time is not None:
        report["stats"]["startTime"] = start_time
    return report


def make_json_report_zip(report: dict[str, Any] | str, path: str = "report.json") -> bytes:
    body = report if isinstance(report, str) else json.dumps(report)
    return make_zip({path: body})


# =============================================================================
# CANONICAL RECORDS
# =============================================================================


def make_attempt(
    retry_index: int = 0,
    status: AttemptStatus = AttemptStatus.PASSED,
    duration_ms: int = 100,
    error: str | None = None,
    screenshots: list[str] | None = None,
    steps: list[StepRecord] | None = None,
    start_time: str | None = None,
) -> ExtractedAttempt:
    return ExtractedAttempt(
        retry_index=retry_index,
        status=status,
        duration_ms=duration_ms,
        error=error,
        screenshots=screenshots or [],
        steps=steps,
        start_time=start_time,
    )


def make_extracted_test(
    name: str = "should log in",
    file: str = "tests/login.spec.ts",
    status: ExecutionStatus = ExecutionStatus.PASSED,
    duration: int | None = None,
    started_at: str | None = "2024-01-15T10:00:00.000Z",
    attempts: list[ExtractedAttempt] | None = None,
    test_id: str = "t-1",
    screenshots: list[str] | None = None,
) -> ExtractedTest:
    """Create an ExtractedTest; duration defaults to the attempt sum."""
    attempts = attempts if attempts is not None else [make_attempt(start_time=started_at)]
    return ExtractedTest(
        id=test_id,
        name=name,
        file=file,
        status=status,
        duration=duration if duration is not None else sum(a.duration_ms for a in attempts),
        attempts=attempts,
        screenshots=screenshots or [],
        started_at=started_at,
    )


# =============================================================================
# COLLABORATORS
# =============================================================================


class InMemoryBlobStorage:
    """Blob storage keeping objects in a dict."""

    def __init__(self, base_url: str = "https://blobs.test"):
        self.base_url = base_url
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self.objects[(bucket, key)] = (data, content_type)

    async def get_durable_reference(self, bucket: str, key: str, expires_in: int) -> str:
        return f"{self.base_url}/{bucket}/{key}?expires={expires_in}"


class FailingBlobStorage:
    """Blob storage failing on upload or on signing."""

    def __init__(self, fail_on: str = "upload"):
        self.fail_on = fail_on
        self.uploads = 0

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self.uploads += 1
        if self.fail_on == "upload":
            raise BlobStorageError("bucket not found", status_code=404)

    async def get_durable_reference(self, bucket: str, key: str, expires_in: int) -> str:
        raise BlobStorageError("signing failed", status_code=500)


class FakeLookupRepository:
    """Lookup repository backed by dicts."""

    def __init__(
        self,
        environments: Mapping[str, str] | None = None,
        triggers: Mapping[str, str] | None = None,
        suites: Mapping[str, str] | None = None,
    ):
        self.environments = dict(environments or {"development": ENVIRONMENT_ID})
        self.triggers = dict(triggers or {"push": TRIGGER_ID})
        self.suites = dict(suites or {SUITE_ID: PROJECT_ID})

    async def get_environment_by_name(self, name: str) -> NamedEntity | None:
        entity_id = self.environments.get(name)
        return NamedEntity(id=entity_id, name=name) if entity_id else None

    async def get_trigger_by_name(self, name: str) -> NamedEntity | None:
        entity_id = self.triggers.get(name)
        return NamedEntity(id=entity_id, name=name) if entity_id else None

    async def get_suite_by_id(self, suite_id: str) -> SuiteInfo | None:
        project_id = self.suites.get(suite_id)
        return SuiteInfo(id=suite_id, project_id=project_id) if project_id else None


class FakeRunRepository:
    """Run repository keeping committed rows in lists.

    Set ``fail_at`` to make one persistence stage raise.
    """

    def __init__(self, fail_at: PersistenceStage | None = None):
        self.fail_at = fail_at
        self.runs: list[tuple[StoredRun, RunSummaryRecord]] = []
        self.canonical: dict[tuple[str, str, str], str] = {}
        self.executions: list[tuple[str, ExecutionRecord]] = []
        self.attempts: list[AttemptRecord] = []
        self.calls: list[str] = []

    def _maybe_fail(self, stage: PersistenceStage) -> None:
        self.calls.append(stage.value)
        if self.fail_at is stage:
            raise RuntimeError(f"database unavailable during {stage.value}")

    async def find_duplicate_by_content_hash(
        self, content_hash: str, project_id: str | None = None
    ) -> ExistingRun | None:
        for run, summary in self.runs:
            if summary.content_hash == content_hash and project_id in (None, summary.project_id):
                return ExistingRun(id=run.id, timestamp=run.timestamp)
        return None

    async def create_test_run(self, summary: RunSummaryRecord) -> StoredRun:
        self._maybe_fail(PersistenceStage.CREATE_RUN)
        run = StoredRun(id=str(uuid.uuid4()), timestamp=datetime.now(UTC))
        self.runs.append((run, summary))
        return run

    async def upsert_canonical_tests(
        self, definitions: Sequence[CanonicalTestDefinition]
    ) -> list[StoredCanonicalTest]:
        self._maybe_fail(PersistenceStage.UPSERT_CANONICAL_TESTS)
        rows = []
        for definition in definitions:
            key = definition.conflict_key
            self.canonical.setdefault(key, str(uuid.uuid4()))
            rows.append(
                StoredCanonicalTest(
                    id=self.canonical[key], file=definition.file, name=definition.name
                )
            )
        return rows

    async def insert_executions(self, records: Sequence[ExecutionRecord]) -> list[str]:
        self._maybe_fail(PersistenceStage.INSERT_EXECUTIONS)
        ids = [str(uuid.uuid4()) for _ in records]
        self.executions.extend(zip(ids, records, strict=True))
        return ids

    async def insert_attempts(self, records: Sequence[AttemptRecord]) -> None:
        self._maybe_fail(PersistenceStage.INSERT_ATTEMPTS)
        self.attempts.extend(records)
