"""Directory-backed store for uploaded test plans keyed by opaque file ids."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Protocol

import structlog

from jmeter_runner.constants import TEST_PLAN_SUFFIX
from jmeter_runner.domain import ids
from jmeter_runner.domain.errors import InvalidConfiguration, NotFound


class FileStore(Protocol):
    def resolve(self, source_file_id: str) -> Path: ...


class DirectoryFileStore:
    """Stores test plans as ``<root>/<id>.jmx``."""

    def __init__(self, root: Path, *, logger: Any | None = None) -> None:
        self._root = Path(root)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, source_file_id: str) -> Path:
        """Return the stored plan path; ``NotFound`` for unknown or deleted ids."""
        try:
            ids.validate_file_id(source_file_id)
        except ValueError as exc:
            raise NotFound(f"test plan not found: {source_file_id!r}") from exc
        candidate = self._path_for(source_file_id)
        if not candidate.is_file():
            raise NotFound(f"test plan not found: {source_file_id}")
        return candidate

    def add(self, source: Path) -> str:
        """Copy a ``.jmx`` plan into the store and return its new id."""
        source = Path(source)
        if source.suffix.lower() != TEST_PLAN_SUFFIX:
            raise InvalidConfiguration(
                f"invalid file type: {source.name}; only {TEST_PLAN_SUFFIX} files are accepted"
            )
        if not source.is_file():
            raise NotFound(f"test plan not found: {source}")
        if source.stat().st_size == 0:
            raise InvalidConfiguration(f"test plan is empty: {source}")

        self._root.mkdir(parents=True, exist_ok=True)
        file_id = ids.generate_file_id()
        destination = self._path_for(file_id)
        shutil.copyfile(source, destination)
        self._logger.info("test_plan_stored", file_id=file_id, source=str(source))
        return file_id

    def delete(self, source_file_id: str) -> None:
        path = self.resolve(source_file_id)
        path.unlink()
        self._logger.info("test_plan_deleted", file_id=source_file_id)

    def list_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        found = [
            entry.stem
            for entry in self._root.iterdir()
            if entry.is_file() and entry.suffix == TEST_PLAN_SUFFIX and ids.is_file_id(entry.stem)
        ]
        return sorted(found)

    def validate_file_id(self, source_file_id: str) -> None:
        ids.validate_file_id(source_file_id)

    def _path_for(self, source_file_id: str) -> Path:
        return self._root / f"{source_file_id}{TEST_PLAN_SUFFIX}"


__all__ = ["DirectoryFileStore", "FileStore"]
