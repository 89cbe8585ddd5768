"""Report lookup, listing, packaging, resource resolution and deletion tests."""

from __future__ import annotations

import io
import os
import time
import zipfile
from pathlib import Path

import pytest

from jmeter_runner.domain.errors import NotFound
from jmeter_runner.reports.locator import ReportLocator

FIRST = "2026-02-01T12-00-00-000000001"
SECOND = "2026-02-01T12-05-00-000000002"


def _write_dashboard(reports_dir: Path, execution_id: str) -> Path:
    root = reports_dir / execution_id / "dashboard"
    (root / "content" / "js").mkdir(parents=True)
    (root / "index.html").write_text("<html>dashboard</html>")
    (root / "content" / "js" / "graph.js").write_text("var x = 1;")
    (root / "statistics.json").write_text("{}")
    (reports_dir / execution_id / "console.log").write_text("... end of run\n")
    return root


def test_layout_places_dashboard_under_run_dir(tmp_path: Path) -> None:
    locator = ReportLocator(tmp_path / "reports")

    assert locator.run_dir_for(FIRST) == tmp_path / "reports" / FIRST
    assert locator.report_dir_for(FIRST) == tmp_path / "reports" / FIRST / "dashboard"
    with pytest.raises(ValueError, match="invalid execution id"):
        locator.run_dir_for("../escape")


def test_locate_returns_none_without_dashboard(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    (reports_dir / FIRST).mkdir(parents=True)
    locator = ReportLocator(reports_dir)

    assert locator.locate(FIRST) is None
    assert locator.locate("not-an-id") is None

    root = _write_dashboard(reports_dir, SECOND)
    assert locator.locate(SECOND) == root


def test_archive_is_deterministic_and_relative_to_report_root(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    _write_dashboard(reports_dir, FIRST)
    locator = ReportLocator(reports_dir)

    first = locator.package_as_archive(FIRST)
    time.sleep(0.01)
    second = locator.package_as_archive(FIRST)

    assert first == second
    with zipfile.ZipFile(io.BytesIO(first)) as archive:
        assert archive.namelist() == [
            "content/js/graph.js",
            "index.html",
            "statistics.json",
        ]
        assert archive.read("index.html") == b"<html>dashboard</html>"
        assert archive.getinfo("index.html").date_time == (1980, 1, 1, 0, 0, 0)


def test_archive_of_missing_report_raises_not_found(tmp_path: Path) -> None:
    locator = ReportLocator(tmp_path / "reports")

    with pytest.raises(NotFound, match=f"report not found: {FIRST}"):
        locator.package_as_archive(FIRST)


def test_list_reports_is_newest_first_and_skips_foreign_entries(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    older = _write_dashboard(reports_dir, FIRST)
    newer = _write_dashboard(reports_dir, SECOND)
    os.utime(older, (1_700_000_000, 1_700_000_000))
    os.utime(newer, (1_700_000_100, 1_700_000_100))
    (reports_dir / "scratch").mkdir()
    (reports_dir / "2026-02-01T12-10-00-000000003").mkdir()
    (reports_dir / "notes.txt").write_text("x")

    reports = ReportLocator(reports_dir).list_reports()

    assert [report.execution_id for report in reports] == [SECOND, FIRST]
    assert reports[0].path == str(newer)
    assert reports[0].size_bytes == len("<html>dashboard</html>") + len("var x = 1;") + 2
    assert reports[0].created_at.timestamp() == 1_700_000_100


def test_list_reports_without_directory_is_empty(tmp_path: Path) -> None:
    assert ReportLocator(tmp_path / "missing").list_reports() == []


def test_resolve_resource_defaults_to_index(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    root = _write_dashboard(reports_dir, FIRST)
    locator = ReportLocator(reports_dir)

    assert locator.resolve_resource(FIRST) == root / "index.html"
    assert locator.resolve_resource(FIRST, "/") == root / "index.html"
    assert locator.resolve_resource(FIRST, "content/js/graph.js") == root / "content/js/graph.js"


@pytest.mark.parametrize(
    ("relative", "message"),
    [
        ("../console.log", "invalid resource path"),
        ("content/../../console.log", "invalid resource path"),
        ("missing.html", "resource not found"),
        ("content", "resource not found"),
    ],
)
def test_resolve_resource_refuses_escapes_and_missing_files(
    tmp_path: Path, relative: str, message: str
) -> None:
    reports_dir = tmp_path / "reports"
    _write_dashboard(reports_dir, FIRST)

    with pytest.raises(NotFound, match=message):
        ReportLocator(reports_dir).resolve_resource(FIRST, relative)


@pytest.mark.skipif(os.name == "nt", reason="symlinks require privileges on Windows")
def test_resolve_resource_refuses_symlink_out_of_root(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    root = _write_dashboard(reports_dir, FIRST)
    secret = tmp_path / "secret.txt"
    secret.write_text("secret")
    (root / "leak.html").symlink_to(secret)

    with pytest.raises(NotFound, match="invalid resource path"):
        ReportLocator(reports_dir).resolve_resource(FIRST, "leak.html")


def test_delete_report_removes_the_whole_run_dir(tmp_path: Path) -> None:
    reports_dir = tmp_path / "reports"
    _write_dashboard(reports_dir, FIRST)
    _write_dashboard(reports_dir, SECOND)
    locator = ReportLocator(reports_dir)

    locator.delete_report(FIRST)

    assert not (reports_dir / FIRST).exists()
    assert locator.locate(SECOND) is not None
    with pytest.raises(NotFound):
        locator.delete_report(FIRST)
    with pytest.raises(NotFound):
        locator.delete_report("../reports")
