"""Playwright report reading, decoding and normalization.

Usage:
    from flakeboard.reports import process_report, calculate_content_hash

    report = process_report(zip_bytes)
    content_hash = calculate_content_hash(report.tests)
"""

from .base import ArchiveContents, RawReportSource, ReportArchive
from .ci_metadata import resolve_ci_overrides
from .hashing import calculate_content_hash
from .processor import process_archive, process_report
from .registry import ReportSourceRegistry, get_default_registry
from .stats import calculate_run_stats, format_duration, wall_clock_duration

__all__ = [
    "ArchiveContents",
    "RawReportSource",
    "ReportArchive",
    "ReportSourceRegistry",
    "calculate_content_hash",
    "calculate_run_stats",
    "format_duration",
    "get_default_registry",
    "process_archive",
    "process_report",
    "resolve_ci_overrides",
    "wall_clock_duration",
]
