"""Report sources for the two Playwright archive layouts.

HTML reports (``index.html``) embed a base64 ZIP holding one JSON document
per spec file plus a ``report.json`` with run metadata. Legacy uploads are
raw JSON reporter output (``report.json`` or ``data/*.json``) with nested
suites.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import re
import zlib
from typing import Any
from zipfile import BadZipFile, ZipFile

from flakeboard.core.exceptions import ErrorCode, ReportProcessingError
from flakeboard.core.models import RawReportDocument, ReportShape
from flakeboard.logging import get_logger
from flakeboard.reports.base import (
    ENVIRONMENT_JSON,
    INDEX_HTML,
    JSON_EXT,
    REPORT_JSON,
    ArchiveContents,
    RawReportSource,
    ReportArchive,
    is_ignored_entry,
)
from flakeboard.reports.schema import coerce_timestamp

logger = get_logger(__name__)

# window.playwrightReportBase64 = "data:application/zip;base64,UEsDB..."
EMBEDDED_REPORT_PATTERN = re.compile(r'=\s*"data:application/zip;base64,([^"]+)"')
DATA_JSON_PATTERN = re.compile(r"^data/[^/]+\.json$")
ALLURE_MESSAGE_CONTENT_TYPE = "application/vnd.allure.message+json"
DAT_EXT = ".dat"


def _report_metadata(report: dict[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    """Pull CI metadata and the execution start time out of a report object."""
    metadata = report.get("metadata")
    if not isinstance(metadata, dict):
        config = report.get("config")
        metadata = config.get("metadata") if isinstance(config, dict) else None
    ci = metadata.get("ci") if isinstance(metadata, dict) else None

    start_time = report.get("startTime")
    if start_time is None and isinstance(report.get("stats"), dict):
        start_time = report["stats"].get("startTime")
    start_time = coerce_timestamp(start_time)

    return (
        ci if isinstance(ci, dict) and ci else None,
        start_time if isinstance(start_time, str) and start_time else None,
    )


class HtmlReportSource(RawReportSource):
    """Self-contained HTML report with an embedded base64 ZIP."""

    @property
    def name(self) -> str:
        return "html"

    def can_handle(self, archive: ReportArchive) -> bool:
        return archive.contains(INDEX_HTML)

    def read(self, archive: ReportArchive) -> ArchiveContents:
        html = archive.read_text(INDEX_HTML) or ""
        match = EMBEDDED_REPORT_PATTERN.search(html)
        if not match:
            raise ReportProcessingError(
                ErrorCode.NO_EMBEDDED_REPORT, "No embedded report found in index.html"
            )

        try:
            payload = base64.b64decode(match.group(1), validate=False)
            embedded = ZipFile(io.BytesIO(payload))
        except (binascii.Error, BadZipFile, ValueError) as e:
            raise ReportProcessingError(
                ErrorCode.NO_EMBEDDED_REPORT, f"Embedded report is not a readable ZIP: {e}"
            ) from e

        with embedded:
            contents = ArchiveContents()
            for entry in embedded.namelist():
                if is_ignored_entry(entry) or not entry.endswith(JSON_EXT):
                    continue
                try:
                    data = embedded.read(entry)
                except (BadZipFile, zlib.error, EOFError) as e:
                    raise ReportProcessingError(
                        ErrorCode.NO_EMBEDDED_REPORT,
                        f"Corrupted entry {entry} in embedded report: {e}",
                    ) from e
                text = data.decode("utf-8", errors="replace")
                if entry == REPORT_JSON:
                    contents.ci_metadata, contents.execution_time = self._read_report_json(text)
                    continue
                contents.documents.append(
                    RawReportDocument(source=entry, text=text, shape=ReportShape.FRAGMENT)
                )

        logger.info("html_report_read", fragments=len(contents.documents))
        return contents

    @staticmethod
    def _read_report_json(text: str) -> tuple[dict[str, Any] | None, str | None]:
        try:
            report = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("report_metadata_unreadable", source=REPORT_JSON, error=str(e))
            return None, None
        if not isinstance(report, dict):
            return None, None
        return _report_metadata(report)


class JsonReportSource(RawReportSource):
    """Legacy upload: raw JSON reporter output with nested suites."""

    @property
    def name(self) -> str:
        return "json"

    def can_handle(self, archive: ReportArchive) -> bool:
        return self._find_report_file(archive) is not None

    @staticmethod
    def _find_report_file(archive: ReportArchive) -> str | None:
        for name in archive.names:
            if DATA_JSON_PATTERN.match(name):
                return name
        if archive.contains(REPORT_JSON):
            return REPORT_JSON
        return None

    def read(self, archive: ReportArchive) -> ArchiveContents:
        report_file = self._find_report_file(archive)
        if report_file is None:
            raise ReportProcessingError(
                ErrorCode.NO_REPORT_FOUND, "No report.json or data/*.json found in ZIP"
            )

        text = archive.read_text(report_file) or ""
        document = RawReportDocument(source=report_file, text=text, shape=ReportShape.FULL_REPORT)
        contents = ArchiveContents(documents=[document])
        try:
            report = json.loads(text)
        except json.JSONDecodeError:
            # The decoder reports syntax errors with the proper code
            return contents
        if isinstance(report, dict):
            contents.ci_metadata, contents.execution_time = _report_metadata(report)
        return contents


def read_environment_data(archive: ReportArchive) -> dict[str, Any] | None:
    """Parse ``environment.json`` next to the report, if present."""
    return archive.read_json_object(ENVIRONMENT_JSON)


def read_allure_metadata(archive: ReportArchive) -> dict[str, dict[str, Any]]:
    """Index Allure metadata ``.dat`` files by path without extension.

    Only files shaped ``{"type": "metadata", "data": {...}}`` are kept.
    """
    metadata: dict[str, dict[str, Any]] = {}
    for name in archive.names:
        if not name.endswith(DAT_EXT):
            continue
        text = archive.read_text(name)
        try:
            data = json.loads(text or "")
        except json.JSONDecodeError:
            logger.debug("allure_metadata_skipped", path=name)
            continue
        if isinstance(data, dict) and data.get("type") == "metadata" and isinstance(
            data.get("data"), dict
        ):
            metadata[name[: -len(DAT_EXT)]] = data["data"]
    return metadata
