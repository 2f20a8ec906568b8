"""Tests for archive reading and report source detection."""

from __future__ import annotations

import json

import pytest

from flakeboard.core.exceptions import ErrorCode, ReportProcessingError
from flakeboard.core.models import ReportShape
from flakeboard.reports.archive import (
    HtmlReportSource,
    JsonReportSource,
    read_allure_metadata,
    read_environment_data,
)
from flakeboard.reports.base import ReportArchive, is_ignored_entry
from flakeboard.reports.registry import ReportSourceRegistry, get_default_registry
from tests.factories import (
    make_fragment,
    make_fragment_test,
    make_html_report_zip,
    make_json_report,
    make_json_report_zip,
    make_spec,
    make_suite,
    make_zip,
)


def read_contents(content: bytes):
    with ReportArchive.open(content) as archive:
        return get_default_registry().read(archive)


class TestReportArchive:
    """Tests for the ZIP wrapper."""

    def test_open_rejects_non_zip_bytes(self):
        with pytest.raises(ReportProcessingError) as exc_info:
            ReportArchive.open(b"definitely not a zip")

        assert exc_info.value.code is ErrorCode.INVALID_ZIP

    def test_root_defaults_to_archive_root(self):
        archive = ReportArchive.open(make_zip({"index.html": "<html/>", "data/a.png": b"x"}))

        assert archive.root == ""
        assert archive.contains("data/a.png")

    def test_root_follows_wrapper_directory(self):
        archive = ReportArchive.open(
            make_zip(
                {
                    "playwright-report/index.html": "<html/>",
                    "playwright-report/data/a.png": b"png",
                }
            )
        )

        assert archive.root == "playwright-report/"
        assert archive.read_bytes("data/a.png") == b"png"
        assert archive.names == ["index.html", "data/a.png"]

    def test_shallowest_index_html_wins(self):
        archive = ReportArchive.open(
            make_zip(
                {
                    "outer/nested/deeper/index.html": "<html/>",
                    "outer/index.html": "<html/>",
                }
            )
        )

        assert archive.root == "outer/"

    def test_macos_metadata_is_ignored(self):
        archive = ReportArchive.open(
            make_zip({"__MACOSX/._index.html": b"junk", "report.json": "{}"})
        )

        assert archive.names == ["report.json"]
        assert not archive.contains("index.html")

    def test_read_bytes_returns_none_for_missing_entry(self):
        archive = ReportArchive.open(make_zip({"report.json": "{}"}))

        assert archive.read_bytes("data/missing.png") is None

    def test_read_json_object_ignores_arrays_and_garbage(self):
        archive = ReportArchive.open(make_zip({"a.json": "[1, 2]", "b.json": "{oops"}))

        assert archive.read_json_object("a.json") is None
        assert archive.read_json_object("b.json") is None

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("__MACOSX/data/x.png", True),
            ("report/__MACOSX/x.json", True),
            ("data/", True),
            ("data/x.json", False),
        ],
    )
    def test_is_ignored_entry(self, name, expected):
        assert is_ignored_entry(name) is expected


class TestHtmlReportSource:
    """Tests for HTML reports with an embedded base64 archive."""

    def test_every_embedded_json_except_report_json_is_a_fragment(self):
        content = make_html_report_zip(
            {
                "a1b2.json": make_fragment([make_fragment_test()]),
                "c3d4.json": make_fragment([make_fragment_test(title="other")]),
            },
            report_json={"metadata": {"ci": {"BRANCH": "main"}}, "startTime": 1705312800000},
        )

        contents = read_contents(content)

        assert sorted(d.source for d in contents.documents) == ["a1b2.json", "c3d4.json"]
        assert all(d.shape is ReportShape.FRAGMENT for d in contents.documents)
        assert contents.ci_metadata == {"BRANCH": "main"}
        assert contents.execution_time == "2024-01-15T10:00:00.000Z"

    def test_ci_metadata_is_read_from_config_metadata(self):
        content = make_html_report_zip(
            {"a.json": make_fragment([])},
            report_json={
                "config": {"metadata": {"ci": {"GITHUB_HEAD_REF": "feature/x"}}},
                "stats": {"startTime": "2024-01-15T09:00:00.000Z"},
            },
        )

        contents = read_contents(content)

        assert contents.ci_metadata == {"GITHUB_HEAD_REF": "feature/x"}
        assert contents.execution_time == "2024-01-15T09:00:00.000Z"

    def test_missing_embedded_marker_raises(self):
        content = make_zip({"index.html": "<html><body>No data here</body></html>"})

        with pytest.raises(ReportProcessingError) as exc_info:
            read_contents(content)

        assert exc_info.value.code is ErrorCode.NO_EMBEDDED_REPORT

    def test_embedded_payload_that_is_not_a_zip_raises(self):
        content = make_zip(
            {"index.html": '<script>x = "data:application/zip;base64,bm90IGEgemlw";</script>'}
        )

        with pytest.raises(ReportProcessingError) as exc_info:
            read_contents(content)

        assert exc_info.value.code is ErrorCode.NO_EMBEDDED_REPORT

    def test_unreadable_report_json_keeps_fragments(self):
        content = make_html_report_zip(
            {"a.json": make_fragment([make_fragment_test()]), "report.json": "{broken"}
        )

        contents = read_contents(content)

        assert [d.source for d in contents.documents] == ["a.json"]
        assert contents.ci_metadata is None

    def test_name(self):
        assert HtmlReportSource().name == "html"


class TestJsonReportSource:
    """Tests for legacy JSON reporter archives."""

    def test_report_json_is_a_full_report(self):
        report = make_json_report(
            [make_suite(specs=[make_spec()])], ci={"BRANCH": "develop"}, start_time=1705312800000
        )

        contents = read_contents(make_json_report_zip(report))

        assert len(contents.documents) == 1
        assert contents.documents[0].shape is ReportShape.FULL_REPORT
        assert contents.documents[0].source == "report.json"
        assert contents.ci_metadata == {"BRANCH": "develop"}
        assert contents.execution_time == "2024-01-15T10:00:00.000Z"

    def test_data_json_is_preferred_over_report_json(self):
        content = make_zip(
            {
                "report.json": json.dumps(make_json_report([])),
                "data/results.json": json.dumps(make_json_report([])),
            }
        )

        contents = read_contents(content)

        assert contents.documents[0].source == "data/results.json"

    def test_invalid_json_is_left_to_the_decoder(self):
        contents = read_contents(make_json_report_zip("{not json"))

        assert contents.documents[0].text == "{not json"
        assert contents.ci_metadata is None

    def test_can_handle_requires_a_report_file(self):
        archive = ReportArchive.open(make_zip({"data/nested/deep.json": "{}"}))

        assert not JsonReportSource().can_handle(archive)


class TestReportSourceRegistry:
    """Tests for source selection."""

    def test_default_registry_checks_html_first(self):
        registry = get_default_registry()

        assert [s.name for s in registry.sources] == ["html", "json"]

    def test_empty_archive_yields_no_documents(self):
        contents = read_contents(make_zip({}))

        assert contents.documents == []
        assert contents.ci_metadata is None

    def test_archive_without_report_raises_no_report_found(self):
        with pytest.raises(ReportProcessingError) as exc_info:
            read_contents(make_zip({"screenshot.png": b"png"}))

        assert exc_info.value.code is ErrorCode.NO_REPORT_FOUND

    def test_identify_returns_none_for_unknown_layout(self):
        registry = ReportSourceRegistry()
        archive = ReportArchive.open(make_zip({"index.html": "<html/>"}))

        assert registry.identify(archive) is None


class TestArchiveExtras:
    """Tests for environment.json and Allure metadata files."""

    def test_environment_json_is_parsed(self):
        archive = ReportArchive.open(
            make_zip(
                {
                    "report/index.html": "<html/>",
                    "report/environment.json": json.dumps({"baseURL": "https://staging.test"}),
                }
            )
        )

        assert read_environment_data(archive) == {"baseURL": "https://staging.test"}

    def test_missing_environment_json_is_none(self):
        archive = ReportArchive.open(make_zip({"index.html": "<html/>"}))

        assert read_environment_data(archive) is None

    def test_allure_metadata_is_indexed_without_extension(self):
        metadata = {"type": "metadata", "data": {"labels": [{"name": "epic", "value": "Auth"}]}}
        archive = ReportArchive.open(
            make_zip(
                {
                    "index.html": "<html/>",
                    "data/abc123.dat": json.dumps(metadata),
                    "data/other.dat": json.dumps({"type": "something-else"}),
                    "data/garbage.dat": b"\x00\x01",
                }
            )
        )

        assert read_allure_metadata(archive) == {
            "data/abc123": {"labels": [{"name": "epic", "value": "Auth"}]}
        }
