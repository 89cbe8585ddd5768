"""
jmeter-runner — report locator and packager

File: src/jmeter_runner/reports/locator.py

Purpose
- Map execution ids to their output layout under the reports directory and
  expose generated HTML dashboards for lookup, listing, download and deletion.

Functional requirements
- ``<reports_dir>/<execution_id>`` holds one run; its ``dashboard``
  subdirectory is the report root.
- Packaging produces a deterministic zip whose entry names are relative to the
  report root. Missing reports raise ``NotFound``.
- Resource lookups never escape the report root.
"""

from __future__ import annotations

import io
import os
import stat
import zipfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from jmeter_runner.constants import DASHBOARD_DIR_NAME, REPORT_INDEX_FILE
from jmeter_runner.domain import ids
from jmeter_runner.domain.errors import NotFound
from jmeter_runner.domain.models import ReportInfo
from jmeter_runner.utils.fs import contained_path, guarded_remove, lexically_contained, tree_size

_ZIP_FIXED_TIMESTAMP: Final[tuple[int, int, int, int, int, int]] = (1980, 1, 1, 0, 0, 0)


class ReportLocator:
    """Resolves and packages per-execution report directories."""

    def __init__(self, reports_dir: Path, *, logger: Any | None = None) -> None:
        self._reports_dir = Path(reports_dir)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def reports_dir(self) -> Path:
        return self._reports_dir

    def run_dir_for(self, execution_id: str) -> Path:
        ids.validate_execution_id(execution_id)
        return self._reports_dir / execution_id

    def report_dir_for(self, execution_id: str) -> Path:
        return self.run_dir_for(execution_id) / DASHBOARD_DIR_NAME

    def locate(self, execution_id: str) -> Path | None:
        """Report root for ``execution_id`` if one was generated, else ``None``."""
        if not ids.is_execution_id(execution_id):
            return None
        candidate = self.report_dir_for(execution_id)
        if candidate.is_dir():
            return candidate
        return None

    def package_as_archive(self, execution_id: str) -> bytes:
        root = self._require_report(execution_id)
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=9,
            allowZip64=True,
        ) as archive:
            for file_path in _iter_regular_files(root):
                zip_info = zipfile.ZipInfo(filename=file_path.relative_to(root).as_posix())
                zip_info.date_time = _ZIP_FIXED_TIMESTAMP
                zip_info.compress_type = zipfile.ZIP_DEFLATED
                zip_info.external_attr = (0o100644 & 0xFFFF) << 16
                zip_info.create_system = 3
                archive.writestr(zip_info, file_path.read_bytes())
        payload = buffer.getvalue()
        self._logger.info("report_packaged", execution_id=execution_id, size_bytes=len(payload))
        return payload

    def list_reports(self) -> list[ReportInfo]:
        """All generated reports, newest first."""
        if not self._reports_dir.is_dir():
            self._logger.warning("reports_dir_missing", path=str(self._reports_dir))
            return []

        reports: list[ReportInfo] = []
        for entry in self._reports_dir.iterdir():
            if not entry.is_dir() or not ids.is_execution_id(entry.name):
                continue
            report_root = entry / DASHBOARD_DIR_NAME
            if not report_root.is_dir():
                continue
            try:
                modified = report_root.stat().st_mtime
            except OSError as exc:
                self._logger.warning("report_unreadable", path=str(report_root), error=str(exc))
                continue
            reports.append(
                ReportInfo(
                    execution_id=entry.name,
                    path=str(report_root),
                    size_bytes=tree_size(report_root),
                    created_at=datetime.fromtimestamp(modified, tz=UTC),
                )
            )
        reports.sort(key=lambda item: (item.created_at, item.execution_id), reverse=True)
        return reports

    def resolve_resource(self, execution_id: str, relative: str | None = None) -> Path:
        """Path of a file inside the report root; defaults to ``index.html``."""
        root = self._require_report(execution_id)
        if relative is None or relative in ("", "/"):
            relative = REPORT_INDEX_FILE
        candidate = root / relative.lstrip("/")
        if not lexically_contained(candidate, root):
            raise NotFound(f"invalid resource path: {relative}")
        if not candidate.is_file():
            raise NotFound(f"resource not found: {relative}")
        # Symlinks inside the dashboard must not point outside it either.
        if not contained_path(candidate, root):
            raise NotFound(f"invalid resource path: {relative}")
        return candidate

    def delete_report(self, execution_id: str) -> None:
        """Remove the whole run directory of ``execution_id``."""
        if not ids.is_execution_id(execution_id):
            raise NotFound(f"report not found: {execution_id}")
        run_dir = self.run_dir_for(execution_id)
        if not run_dir.is_dir():
            raise NotFound(f"report not found: {execution_id}")
        guarded_remove(run_dir, self._reports_dir)
        self._logger.info("report_deleted", execution_id=execution_id)

    def _require_report(self, execution_id: str) -> Path:
        root = self.locate(execution_id)
        if root is None:
            raise NotFound(f"report not found: {execution_id}")
        return root


def _iter_regular_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for current_dir, dir_names, file_names in os.walk(root, topdown=True, followlinks=False):
        dir_names.sort()
        current_path = Path(current_dir)
        for file_name in sorted(file_names):
            candidate = current_path / file_name
            try:
                mode = candidate.lstat().st_mode
            except FileNotFoundError:
                continue
            if stat.S_ISREG(mode):
                files.append(candidate)
    files.sort(key=lambda item: item.relative_to(root).as_posix())
    return files


__all__ = ["ReportLocator"]
