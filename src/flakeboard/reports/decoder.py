"""Decode raw report documents into per-test entries.

Both report shapes end up as a flat list of ``DecodedTest``: a validated
``FragmentTestPayload`` plus the spec file it belongs to. Suites are
flattened depth-first, nested suites before the suite's own specs.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from flakeboard.core.exceptions import ErrorCode, ReportProcessingError
from flakeboard.core.models import RawReportDocument, ReportShape
from flakeboard.logging import get_logger
from flakeboard.reports.schema import (
    FragmentPayload,
    FragmentTestPayload,
    FullReportPayload,
    SpecPayload,
    SuitePayload,
)

logger = get_logger(__name__)

UNKNOWN_FILE = "unknown"


@dataclass(frozen=True)
class DecodedTest:
    """A validated test entry and the spec file it was declared in."""

    entry: FragmentTestPayload
    file: str


def _load_json(document: RawReportDocument) -> Any:
    try:
        return json.loads(document.text)
    except json.JSONDecodeError as e:
        raise ReportProcessingError(
            ErrorCode.DECODE_ERROR, f"Invalid JSON in {document.source}: {e}"
        ) from e


def _format_validation_error(error: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(p) for p in item['loc'])}: {item['msg']}" for item in error.errors()
    )


def decode_fragment(document: RawReportDocument) -> list[DecodedTest]:
    """Decode an HTML report fragment (flat ``tests`` array).

    Invalid test entries are skipped individually.

    Raises:
        ReportProcessingError: DECODE_ERROR for invalid JSON or a document
            without a ``tests`` array.
    """
    data = _load_json(document)
    try:
        fragment = FragmentPayload.model_validate(data)
    except ValidationError as e:
        raise ReportProcessingError(
            ErrorCode.DECODE_ERROR,
            f"{document.source} is not a test file: {_format_validation_error(e)}",
        ) from e

    decoded = []
    for index, raw_test in enumerate(fragment.tests):
        try:
            entry = FragmentTestPayload.model_validate(raw_test)
        except ValidationError as e:
            logger.warning(
                "test_entry_skipped",
                source=document.source,
                index=index,
                reason=_format_validation_error(e),
            )
            continue
        file = entry.location.file if entry.location else fragment.file_name or UNKNOWN_FILE
        decoded.append(DecodedTest(entry=entry, file=file))
    return decoded


def _spec_to_entries(spec: SpecPayload, suite_file: str | None) -> list[DecodedTest]:
    location_file = spec.location.file if spec.location else None
    file = location_file or spec.file or suite_file or UNKNOWN_FILE
    test_id = spec.test_id or spec.id or f"{file}:{spec.title}"

    if spec.results is not None:
        entry = FragmentTestPayload(
            test_id=test_id,
            title=spec.title,
            project_name=spec.project_name,
            location=spec.location,
            outcome=spec.outcome or "unexpected",
            annotations=spec.annotations,
            results=spec.results,
        )
        return [DecodedTest(entry=entry, file=file)]

    entries = []
    for project_test in spec.tests:
        entry = FragmentTestPayload(
            test_id=test_id,
            title=spec.title,
            project_name=project_test.project_name,
            location=spec.location,
            outcome=project_test.status or spec.outcome or "unexpected",
            annotations=[*spec.annotations, *project_test.annotations],
            results=project_test.results,
        )
        entries.append(DecodedTest(entry=entry, file=file))
    return entries


def flatten_suites(
    suites: Iterable[SuitePayload], source: str = "", parent_file: str | None = None
) -> list[DecodedTest]:
    """Flatten a suite tree depth-first, nested suites before sibling specs."""
    decoded: list[DecodedTest] = []
    for suite in suites:
        suite_file = suite.file or parent_file
        decoded.extend(flatten_suites(suite.suites, source, suite_file))
        for index, raw_spec in enumerate(suite.specs):
            try:
                spec = SpecPayload.model_validate(raw_spec)
            except ValidationError as e:
                logger.warning(
                    "spec_skipped",
                    source=source,
                    suite=suite.title,
                    index=index,
                    reason=_format_validation_error(e),
                )
                continue
            decoded.extend(_spec_to_entries(spec, suite_file))
    return decoded


def decode_full_report(document: RawReportDocument) -> list[DecodedTest]:
    """Decode a JSON reporter document with nested suites.

    Raises:
        ReportProcessingError: DECODE_ERROR for invalid JSON,
            NO_REPORT_FOUND when the document has no ``suites`` structure.
    """
    data = _load_json(document)
    try:
        report = FullReportPayload.model_validate(data)
    except ValidationError as e:
        raise ReportProcessingError(
            ErrorCode.NO_REPORT_FOUND,
            f"Invalid Playwright report format in {document.source}: {_format_validation_error(e)}",
        ) from e
    return flatten_suites(report.suites, document.source)


def decode_document(document: RawReportDocument) -> list[DecodedTest]:
    """Decode one document according to its shape."""
    if document.shape is ReportShape.FRAGMENT:
        return decode_fragment(document)
    return decode_full_report(document)


def decode_documents(documents: Iterable[RawReportDocument]) -> list[DecodedTest]:
    """Decode every document, skipping fragments that cannot be read.

    A broken fragment never aborts the others. A full report is the only
    document of its upload, so its errors propagate.
    """
    decoded: list[DecodedTest] = []
    for document in documents:
        try:
            decoded.extend(decode_document(document))
        except ReportProcessingError as e:
            if document.shape is not ReportShape.FRAGMENT:
                raise
            logger.warning("fragment_skipped", source=document.source, reason=e.message)
    return decoded
