"""Shared exceptions for the flakeboard package."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable machine-readable codes surfaced to callers."""

    NO_REPORT_FOUND = "NO_REPORT_FOUND"
    INVALID_ZIP = "INVALID_ZIP"
    NO_EMBEDDED_REPORT = "NO_EMBEDDED_REPORT"
    DECODE_ERROR = "DECODE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LOOKUP_FAILED = "LOOKUP_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class PersistenceStage(str, Enum):
    """Ordered persistence steps of a single upload."""

    CREATE_RUN = "create_run"
    UPSERT_CANONICAL_TESTS = "upsert_canonical_tests"
    INSERT_EXECUTIONS = "insert_executions"
    INSERT_ATTEMPTS = "insert_attempts"


class FlakeboardError(Exception):
    """Base class for errors raised by the ingestion pipeline."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ReportProcessingError(FlakeboardError):
    """Raised when an uploaded archive cannot be turned into test records.

    Covers corrupt ZIPs, archives without any report document and HTML
    reports whose embedded data cannot be located.
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class LookupNotFoundError(FlakeboardError):
    """Raised when an environment, trigger or suite name does not resolve."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.capitalize()} '{name}' not found. Please create it first.")


class LookupFailedError(FlakeboardError):
    """Raised when a lookup collaborator fails at the transport level."""

    code = ErrorCode.LOOKUP_FAILED


class PersistenceError(FlakeboardError):
    """Raised when a persistence collaborator fails mid-upload.

    Writes committed before ``stage`` are left in place. ``run_id`` is set
    when the run summary had already been created, so operators can find
    the orphaned row.
    """

    code = ErrorCode.PERSISTENCE_FAILED

    def __init__(self, stage: PersistenceStage, message: str, run_id: str | None = None):
        self.stage = stage
        self.run_id = run_id
        super().__init__(f"Persistence failed at stage '{stage.value}': {message}")


class UploadCancelled(FlakeboardError):
    """Raised when the caller cancelled an upload before persistence finished."""

    def __init__(self, stage: PersistenceStage, run_id: str | None = None):
        self.stage = stage
        self.run_id = run_id
        super().__init__(f"Upload cancelled before stage '{stage.value}'")


class BlobStorageError(Exception):
    """Raised by blob storage backends on upload or signing failures."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.status_code:
            return f"Blob storage error ({self.status_code}): {self.message}"
        return f"Blob storage error: {self.message}"
