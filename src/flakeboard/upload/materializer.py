"""Persist screenshots and step logs, falling back to inline encoding.

Materialization runs after the content hash is fixed and never fails an
upload: any blob storage error turns into an inline ``data:`` URI (for
screenshots) or an inline step list (for step logs).
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from flakeboard.core.exceptions import ReportProcessingError
from flakeboard.core.models import ExtractedTest, FailedStep, StepRecord
from flakeboard.logging import get_logger
from flakeboard.reports.base import ReportArchive
from flakeboard.storage.blob import BlobStorage
from flakeboard.upload.images import (
    JPEG_CONTENT_TYPE,
    PNG_CONTENT_TYPE,
    ImageCompressor,
    content_type_for,
)

logger = get_logger(__name__)

STEPS_CONTENT_TYPE = "application/json"
DEFAULT_SIGNED_URL_TTL = 31536000  # one year


def find_last_failed_step(steps: Sequence[StepRecord]) -> FailedStep | None:
    """Find the most recent failing step in a step tree.

    Siblings are scanned last to first. For each step its children are
    searched before its own error, so the deepest failure inside the
    latest failing branch wins.
    """
    for step in reversed(steps):
        nested = find_last_failed_step(step.steps)
        if nested is not None:
            return nested
        if step.error:
            return FailedStep(
                title=step.title or "Unknown step", duration=step.duration, error=step.error
            )
    return None


def to_data_uri(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


@dataclass(frozen=True)
class MaterializedSteps:
    """Where an attempt's step log ended up.

    Exactly one of ``steps_url`` (a storage key) and ``inline_steps`` is
    set when the attempt had steps.
    """

    steps_url: str | None = None
    inline_steps: list[dict[str, Any]] | None = None
    last_failed_step: FailedStep | None = None


class AttachmentMaterializer:
    """Upload screenshots and step logs to blob storage.

    Without a blob storage backend every artifact is kept inline.
    """

    def __init__(
        self,
        blob_storage: BlobStorage | None = None,
        screenshot_bucket: str = "test-screenshots",
        steps_bucket: str = "test-steps",
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL,
        image_compressor: ImageCompressor | None = None,
        concurrency: int = 8,
    ):
        self.blob_storage = blob_storage
        self.screenshot_bucket = screenshot_bucket
        self.steps_bucket = steps_bucket
        self.signed_url_ttl = signed_url_ttl
        self.image_compressor = image_compressor
        self.concurrency = max(concurrency, 1)

    async def materialize_screenshots(
        self, archive: ReportArchive, paths: Iterable[str]
    ) -> dict[str, str]:
        """Resolve archive-relative screenshot paths to durable references.

        Uploads run concurrently; the returned mapping follows input order.
        Paths missing from the archive or corrupted in it are logged and left out.
        """
        unique_paths = list(dict.fromkeys(paths))
        if not unique_paths:
            return {}

        semaphore = asyncio.Semaphore(self.concurrency)
        references = await asyncio.gather(
            *(self._materialize_screenshot(archive, path, semaphore) for path in unique_paths)
        )
        resolved = {
            path: ref for path, ref in zip(unique_paths, references, strict=True) if ref is not None
        }
        logger.info(
            "screenshots_materialized",
            requested=len(unique_paths),
            resolved=len(resolved),
            inline=sum(1 for ref in resolved.values() if ref.startswith("data:")),
        )
        return resolved

    @staticmethod
    def _read_entry(archive: ReportArchive, path: str) -> bytes | None:
        try:
            return archive.read_bytes(path)
        except ReportProcessingError as e:
            logger.warning("screenshot_unreadable", path=path, error=e.message)
            return None

    def _read_screenshot(self, archive: ReportArchive, path: str) -> tuple[str, bytes] | None:
        data = self._read_entry(archive, path)
        if data is not None:
            return path, data
        # Optimized archives replace PNG screenshots with JPEG siblings
        if path.lower().endswith(".png"):
            sibling = f"{path[:-4]}.jpg"
            data = self._read_entry(archive, sibling)
            if data is not None:
                return sibling, data
        return None

    async def _materialize_screenshot(
        self, archive: ReportArchive, path: str, semaphore: asyncio.Semaphore
    ) -> str | None:
        found = self._read_screenshot(archive, path)
        if found is None:
            logger.warning("screenshot_missing", path=path)
            return None
        resolved_path, data = found

        content_type = content_type_for(resolved_path)
        filename = resolved_path.rsplit("/", 1)[-1] or "screenshot.png"
        if self.image_compressor is not None and content_type == PNG_CONTENT_TYPE:
            compressed = self.image_compressor.compress(data)
            if compressed is not None:
                data, content_type = compressed, JPEG_CONTENT_TYPE
                filename = f"{filename.rsplit('.', 1)[0]}.jpg"

        if self.blob_storage is None:
            return to_data_uri(data, content_type)

        key = f"screenshots/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{filename}"
        async with semaphore:
            try:
                await self.blob_storage.upload(self.screenshot_bucket, key, data, content_type)
                return await self.blob_storage.get_durable_reference(
                    self.screenshot_bucket, key, self.signed_url_ttl
                )
            except Exception as e:  # noqa: BLE001
                logger.warning("blob_upload_fallback", kind="screenshot", path=path, error=str(e))
                return to_data_uri(data, content_type)

    async def materialize_steps(
        self,
        steps: Sequence[StepRecord] | None,
        key: str,
        semaphore: asyncio.Semaphore | None = None,
    ) -> MaterializedSteps:
        """Store one attempt's step tree under ``key`` in the steps bucket."""
        if not steps:
            return MaterializedSteps()

        last_failed_step = find_last_failed_step(steps)
        payload = [step.to_dict() for step in steps]
        if self.blob_storage is None:
            return MaterializedSteps(inline_steps=payload, last_failed_step=last_failed_step)

        data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        async with semaphore or asyncio.Semaphore(1):
            try:
                await self.blob_storage.upload(self.steps_bucket, key, data, STEPS_CONTENT_TYPE)
            except Exception as e:  # noqa: BLE001
                logger.warning("blob_upload_fallback", kind="steps", key=key, error=str(e))
                return MaterializedSteps(inline_steps=payload, last_failed_step=last_failed_step)
        return MaterializedSteps(steps_url=key, last_failed_step=last_failed_step)

    async def materialize_attempt_steps(
        self, tests: Sequence[ExtractedTest], prefix: str
    ) -> list[list[MaterializedSteps]]:
        """Materialize every attempt's steps, preserving test and attempt order.

        Keys are ``<prefix>/<test_index>-<test_id>-<retry_index>.json``.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def for_test(index: int, test: ExtractedTest) -> list[MaterializedSteps]:
            return list(
                await asyncio.gather(
                    *(
                        self.materialize_steps(
                            attempt.steps,
                            f"{prefix}/{index}-{test.id}-{attempt.retry_index}.json",
                            semaphore,
                        )
                        for attempt in test.attempts
                    )
                )
            )

        return list(await asyncio.gather(*(for_test(i, t) for i, t in enumerate(tests))))
