"""Flakeboard - Playwright report ingestion and normalization."""

__version__ = "0.1.0"

from flakeboard.core.exceptions import (
    ErrorCode,
    FlakeboardError,
    PersistenceError,
    ReportProcessingError,
)
from flakeboard.core.models import ExecutionStatus, ExtractedAttempt, ExtractedTest, ProcessedReport

__all__ = [
    "ErrorCode",
    "ExecutionStatus",
    "ExtractedAttempt",
    "ExtractedTest",
    "FlakeboardError",
    "PersistenceError",
    "ProcessedReport",
    "ReportProcessingError",
]
