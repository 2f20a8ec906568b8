"""Archive wrapper and the abstract report source."""

from __future__ import annotations

import io
import json
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from zipfile import BadZipFile, ZipFile

from flakeboard.core.exceptions import ErrorCode, ReportProcessingError
from flakeboard.core.models import RawReportDocument
from flakeboard.logging import get_logger

logger = get_logger(__name__)

INDEX_HTML = "index.html"
REPORT_JSON = "report.json"
ENVIRONMENT_JSON = "environment.json"
JSON_EXT = ".json"
MACOS_METADATA_PREFIX = "__MACOSX/"


def is_ignored_entry(name: str) -> bool:
    """Return True for directory entries and macOS resource forks."""
    return name.endswith("/") or name.startswith(MACOS_METADATA_PREFIX) or "/__MACOSX/" in name


class ReportArchive:
    """An opened upload archive with paths resolved against the report root.

    Playwright writes attachment paths relative to the report directory
    (``data/<sha1>.png``). CI artifacts often wrap that directory one level
    deep, so the archive locates the shallowest ``index.html`` and resolves
    relative paths against its directory.
    """

    def __init__(self, zip_file: ZipFile):
        self._zip = zip_file
        self._names = [n for n in zip_file.namelist() if not is_ignored_entry(n)]
        self._name_set = set(self._names)
        self.root = self._find_report_root(self._names)

    @classmethod
    def open(cls, content: bytes) -> ReportArchive:
        """Open raw bytes as a ZIP archive.

        Raises:
            ReportProcessingError: INVALID_ZIP if the bytes are not a ZIP file.
        """
        try:
            return cls(ZipFile(io.BytesIO(content)))
        except (BadZipFile, ValueError, OSError) as e:
            raise ReportProcessingError(
                ErrorCode.INVALID_ZIP, f"Uploaded file is not a valid ZIP archive: {e}"
            ) from e

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> ReportArchive:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    def _find_report_root(names: list[str]) -> str:
        candidates = [n for n in names if n == INDEX_HTML or n.endswith(f"/{INDEX_HTML}")]
        if not candidates:
            return ""
        shallowest = min(candidates, key=lambda n: (n.count("/"), n))
        return shallowest[: -len(INDEX_HTML)]

    @property
    def names(self) -> list[str]:
        """Entry names relative to the report root, in archive order."""
        root = self.root
        return [n[len(root) :] for n in self._names if n.startswith(root)]

    @property
    def is_empty(self) -> bool:
        return not self._names

    def contains(self, path: str) -> bool:
        return f"{self.root}{path}" in self._name_set

    def read_bytes(self, path: str) -> bytes | None:
        """Read a root-relative entry, or None if it does not exist.

        Raises:
            ReportProcessingError: INVALID_ZIP if the entry is corrupted.
        """
        full_name = f"{self.root}{path}"
        if full_name not in self._name_set:
            return None
        try:
            return self._zip.read(full_name)
        except (BadZipFile, zlib.error, EOFError) as e:
            raise ReportProcessingError(
                ErrorCode.INVALID_ZIP, f"Corrupted archive entry {full_name}: {e}"
            ) from e

    def read_text(self, path: str) -> str | None:
        data = self.read_bytes(path)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def read_json_object(self, path: str) -> dict[str, Any] | None:
        """Parse a root-relative entry as a JSON object, None when unusable."""
        text = self.read_text(path)
        if text is None:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("archive_json_unreadable", path=path, error=str(e))
            return None
        return data if isinstance(data, dict) else None


@dataclass
class ArchiveContents:
    """Everything the archive reader hands to the decoder."""

    documents: list[RawReportDocument] = field(default_factory=list)
    ci_metadata: dict[str, Any] | None = None
    execution_time: str | None = None


class RawReportSource(ABC):
    """One on-disk Playwright report layout.

    Each layout knows how to recognise itself and how to enumerate the
    JSON documents that should be decoded.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the layout name."""

    @abstractmethod
    def can_handle(self, archive: ReportArchive) -> bool:
        """Cheap structural check for this layout."""

    @abstractmethod
    def read(self, archive: ReportArchive) -> ArchiveContents:
        """Enumerate candidate JSON documents and report-level metadata.

        Raises:
            ReportProcessingError: If the layout is recognised but its
                report data cannot be located.
        """
