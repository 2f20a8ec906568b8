"""Turn decoded test entries into canonical ``ExtractedTest`` records."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from flakeboard.core.models import (
    AttemptStatus,
    ExecutionMetadata,
    ExecutionStatus,
    ExtractedAttempt,
    ExtractedTest,
    InlineAttachment,
    SourceLocation,
    StepRecord,
)
from flakeboard.reports.archive import ALLURE_MESSAGE_CONTENT_TYPE, DAT_EXT
from flakeboard.reports.decoder import DecodedTest
from flakeboard.reports.schema import AttachmentPayload, ResultPayload, StepPayload

ATTEMPT_STATUS_MAP = {
    "passed": AttemptStatus.PASSED,
    "failed": AttemptStatus.FAILED,
    "timedOut": AttemptStatus.TIMED_OUT,
    "skipped": AttemptStatus.SKIPPED,
    "interrupted": AttemptStatus.FAILED,
}


def to_attempt_status(raw_status: str) -> AttemptStatus:
    """Map a result status onto the attempt enum; unknown values count as failed."""
    return ATTEMPT_STATUS_MAP.get(raw_status, AttemptStatus.FAILED)


def determine_test_status(outcome: str | None, last_status: AttemptStatus) -> ExecutionStatus:
    """Derive a test's aggregate status from its outcome and final attempt.

    Precedence: a skipped final attempt wins, then ``expected`` keeps the
    final attempt's status, then ``flaky``; anything else is a failure.
    """
    if last_status is AttemptStatus.SKIPPED:
        return ExecutionStatus.SKIPPED
    if outcome == "expected":
        return ExecutionStatus(last_status.value)
    if outcome == "flaky":
        return ExecutionStatus.FLAKY
    return ExecutionStatus.FAILED


def extract_screenshots(attachments: Iterable[AttachmentPayload]) -> list[str]:
    """Archive paths of image attachments; inline-only images are excluded."""
    return [a.path for a in attachments if a.is_image and a.path]


def extract_inline_attachments(attachments: Iterable[AttachmentPayload]) -> list[InlineAttachment]:
    """Non-image attachments that carry an inline body."""
    return [
        InlineAttachment(
            name=a.name or "Attachment",
            content_type=a.content_type or "text/plain",
            content=a.body,
        )
        for a in attachments
        if a.body and not a.is_image
    ]


def convert_steps(steps: Sequence[StepPayload]) -> list[StepRecord]:
    return [
        StepRecord(
            title=step.title,
            duration=round(step.duration),
            error=step.error_text,
            category=step.category,
            start_time=step.start_time,
            steps=convert_steps(step.steps),
        )
        for step in steps
    ]


def normalize_attempt(result: ResultPayload, index: int) -> ExtractedAttempt:
    """Build one attempt; ``retry`` wins over the position in ``results``."""
    return ExtractedAttempt(
        retry_index=result.retry if result.retry is not None else index,
        status=to_attempt_status(result.status),
        duration_ms=max(round(result.duration), 0),
        error=result.error_message,
        error_stack=result.error_stack,
        screenshots=extract_screenshots(result.attachments),
        attachments=extract_inline_attachments(result.attachments),
        steps=convert_steps(result.steps) if result.steps is not None else None,
        start_time=result.start_time,
    )


def _allure_metadata(
    attachments: Iterable[AttachmentPayload], allure_index: Mapping[str, Mapping[str, Any]]
) -> dict[str, Any]:
    labels: list[dict[str, str]] = []
    parameters: list[dict[str, str]] = []
    description = None
    description_html = None

    for attachment in attachments:
        if attachment.content_type != ALLURE_MESSAGE_CONTENT_TYPE or not attachment.path:
            continue
        key = attachment.path.removesuffix(DAT_EXT)
        data = allure_index.get(key)
        if not data:
            continue
        if isinstance(data.get("labels"), list):
            labels.extend(data["labels"])
        if isinstance(data.get("parameters"), list):
            parameters.extend(data["parameters"])
        description = description or data.get("description")
        description_html = description_html or data.get("descriptionHtml")

    epic = next((label.get("value") for label in labels if label.get("name") == "epic"), None)
    return {
        "labels": labels or None,
        "parameters": parameters or None,
        "description": description,
        "description_html": description_html,
        "epic": epic,
    }


def build_metadata(
    decoded: DecodedTest,
    last_result: ResultPayload | None,
    allure_index: Mapping[str, Mapping[str, Any]],
) -> ExecutionMetadata:
    entry = decoded.entry
    tags = [a.description for a in entry.annotations if a.type == "tag" and a.description]
    allure = _allure_metadata(last_result.attachments if last_result else [], allure_index)
    return ExecutionMetadata(
        browser=entry.project_name or None,
        tags=tags,
        annotations=[a.model_dump(exclude_none=True) for a in entry.annotations],
        **allure,
    )


def normalize_test(
    decoded: DecodedTest,
    allure_index: Mapping[str, Mapping[str, Any]] | None = None,
) -> ExtractedTest:
    """Convert one decoded entry into an ``ExtractedTest``.

    Status comes from the final attempt, duration is the sum over all
    attempts, and test-level screenshots/error come from the final attempt
    only.
    """
    entry = decoded.entry
    attempts = [normalize_attempt(result, i) for i, result in enumerate(entry.results)]
    last_result = entry.results[-1] if entry.results else None
    last_attempt = attempts[-1] if attempts else None

    if last_attempt is not None:
        status = determine_test_status(entry.outcome, last_attempt.status)
    elif entry.outcome == "skipped":
        status = ExecutionStatus.SKIPPED
    else:
        status = determine_test_status(entry.outcome, AttemptStatus.PASSED)

    location = None
    if entry.location is not None:
        location = SourceLocation(
            file=entry.location.file, line=entry.location.line, column=entry.location.column
        )

    return ExtractedTest(
        id=entry.test_id,
        name=entry.title,
        file=decoded.file,
        status=status,
        duration=sum(a.duration_ms for a in attempts),
        attempts=attempts,
        screenshots=list(last_attempt.screenshots) if last_attempt else [],
        error=last_attempt.error if last_attempt else None,
        error_stack=last_attempt.error_stack if last_attempt else None,
        worker_index=last_result.worker_index if last_result else None,
        started_at=last_attempt.start_time if last_attempt else None,
        location=location,
        metadata=build_metadata(decoded, last_result, allure_index or {}),
    )


def normalize_tests(
    decoded_tests: Iterable[DecodedTest],
    allure_index: Mapping[str, Mapping[str, Any]] | None = None,
) -> list[ExtractedTest]:
    return [normalize_test(decoded, allure_index) for decoded in decoded_tests]
