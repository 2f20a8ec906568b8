"""Registry selecting the report source that matches an archive."""

from __future__ import annotations

from flakeboard.core.exceptions import ErrorCode, ReportProcessingError
from flakeboard.logging import get_logger
from flakeboard.reports.base import ArchiveContents, RawReportSource, ReportArchive

logger = get_logger(__name__)


class ReportSourceRegistry:
    """Registry for report sources.

    Sources are tried in registration order; the first one whose
    ``can_handle`` accepts the archive reads it.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._sources: list[RawReportSource] = []

    @property
    def sources(self) -> list[RawReportSource]:
        """Return the list of registered sources."""
        return self._sources.copy()

    def register(self, source: RawReportSource) -> None:
        """Register a source with the registry."""
        self._sources.append(source)

    def identify(self, archive: ReportArchive) -> RawReportSource | None:
        """Return the first source that recognises the archive layout."""
        for source in self._sources:
            if source.can_handle(archive):
                return source
        return None

    def read(self, archive: ReportArchive) -> ArchiveContents:
        """Enumerate report documents in the archive.

        An archive without entries yields no documents.

        Raises:
            ReportProcessingError: NO_REPORT_FOUND if no source recognises
                a non-empty archive.
        """
        if archive.is_empty:
            logger.info("archive_empty")
            return ArchiveContents()

        source = self.identify(archive)
        if source is None:
            raise ReportProcessingError(
                ErrorCode.NO_REPORT_FOUND,
                "No Playwright report found: expected index.html, report.json or data/*.json",
            )
        logger.debug("report_source_selected", source=source.name, root=archive.root)
        return source.read(archive)


def get_default_registry() -> ReportSourceRegistry:
    """Create a registry with the HTML and JSON report sources registered."""
    from flakeboard.reports.archive import HtmlReportSource, JsonReportSource

    registry = ReportSourceRegistry()
    registry.register(HtmlReportSource())
    registry.register(JsonReportSource())
    return registry
