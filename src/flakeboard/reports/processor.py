"""Decode and normalize an uploaded archive in one pass."""

from __future__ import annotations

from flakeboard.core.models import ProcessedReport
from flakeboard.logging import get_logger
from flakeboard.reports.archive import read_allure_metadata, read_environment_data
from flakeboard.reports.base import ReportArchive
from flakeboard.reports.decoder import decode_documents
from flakeboard.reports.normalizer import normalize_tests
from flakeboard.reports.registry import ReportSourceRegistry, get_default_registry

logger = get_logger(__name__)


def process_archive(
    archive: ReportArchive, registry: ReportSourceRegistry | None = None
) -> ProcessedReport:
    """Run the archive reader, decoder and normalizer over an opened archive.

    Raises:
        ReportProcessingError: If the archive holds no readable report.
    """
    contents = (registry or get_default_registry()).read(archive)
    decoded = decode_documents(contents.documents)
    tests = normalize_tests(decoded, read_allure_metadata(archive))

    if contents.ci_metadata:
        logger.info("ci_metadata_found", keys=sorted(contents.ci_metadata))

    logger.info(
        "report_processed",
        documents=len(contents.documents),
        tests=len(tests),
        execution_time=contents.execution_time,
    )
    return ProcessedReport(
        tests=tests,
        ci_metadata=contents.ci_metadata,
        execution_time=contents.execution_time,
        environment_data=read_environment_data(archive),
    )


def process_report(content: bytes, registry: ReportSourceRegistry | None = None) -> ProcessedReport:
    """Open raw ZIP bytes and process them.

    Raises:
        ReportProcessingError: INVALID_ZIP for unreadable bytes, or any
            error raised while reading the report.
    """
    with ReportArchive.open(content) as archive:
        return process_archive(archive, registry)
