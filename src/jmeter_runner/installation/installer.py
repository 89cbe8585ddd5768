"""
jmeter-runner — distribution installer

File: src/jmeter_runner/installation/installer.py

Purpose
- Validate and extract an uploaded JMeter distribution archive, then swap it
  into the canonical installation directory.

Functional requirements
- Extraction goes to a unique staging directory inside the target directory,
  never on top of the live installation.
- Entries escaping the staging directory, missing ``bin/jmeter`` and
  ``bin/jmeter.bat`` layouts, and I/O failures raise ``ExtractionError``.
- Every failure path deletes staging artifacts before the error surfaces.
- Only the rename pair is serialized across concurrent installs.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import uuid
import zipfile
import zlib
from pathlib import Path
from typing import Any, Final

import structlog

from jmeter_runner.constants import (
    BIN_DIR_NAME,
    CANONICAL_INSTALL_DIR_NAME,
    EXECUTABLE_NAMES,
    RETIRED_DIR_PREFIX,
    STAGING_DIR_PREFIX,
    UNIX_EXECUTABLE_NAME,
)
from jmeter_runner.domain.errors import ExtractionError
from jmeter_runner.utils.fs import lexically_contained

INVALID_DISTRIBUTION_MESSAGE: Final[str] = (
    "Invalid JMeter distribution. The ZIP file must contain a bin directory with jmeter executable."
)
_EXECUTABLE_MODE: Final[int] = 0o755
_UPLOAD_PREFIX: Final[str] = ".upload-"

# Serializes the canonical-directory exchange and tracks in-flight work dirs.
_SWAP_LOCK = threading.Lock()
_IN_FLIGHT: set[Path] = set()


class DistributionInstaller:
    """Extracts distribution archives into ``<target_dir>/jmeter``."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def install(self, archive_path: Path, target_dir: Path) -> Path:
        """Install the archive and return the canonical installation path."""
        archive_path = Path(archive_path)
        target_dir = Path(target_dir)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExtractionError(f"cannot create target directory {target_dir}: {exc}") from exc
        self._remove_leftovers(target_dir)

        with _SWAP_LOCK:
            staging = Path(tempfile.mkdtemp(prefix=STAGING_DIR_PREFIX, dir=target_dir))
            _IN_FLIGHT.add(staging)
        self._logger.info(
            "distribution_extract_started", archive=str(archive_path), staging=str(staging)
        )

        try:
            self._extract(archive_path, staging)
            root = detect_distribution_root(staging)
            if root is None:
                raise ExtractionError(INVALID_DISTRIBUTION_MESSAGE)
            self._mark_executable(root)
            canonical = self._swap_into_place(root, target_dir)
        except OSError as exc:
            self._discard(staging)
            raise ExtractionError(f"failed to extract JMeter distribution: {exc}") from exc
        except BaseException:
            self._discard(staging)
            raise
        finally:
            with _SWAP_LOCK:
                _IN_FLIGHT.discard(staging)

        # A nested root leaves the emptied staging wrapper behind.
        self._discard(staging)
        self._logger.info("distribution_installed", path=str(canonical))
        return canonical

    def install_bytes(self, data: bytes, target_dir: Path) -> Path:
        """Install from in-memory archive bytes; the temporary archive is never retained."""
        target_dir = Path(target_dir)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=_UPLOAD_PREFIX, suffix=".zip", dir=target_dir)
        except OSError as exc:
            raise ExtractionError(f"cannot stage uploaded archive in {target_dir}: {exc}") from exc
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            return self.install(temp_path, target_dir)
        except OSError as exc:
            raise ExtractionError(f"cannot stage uploaded archive: {exc}") from exc
        finally:
            temp_path.unlink(missing_ok=True)

    def uninstall(self, target_dir: Path) -> bool:
        """Remove the canonical installation directory; ``False`` if none existed."""
        canonical = Path(target_dir) / CANONICAL_INSTALL_DIR_NAME
        with _SWAP_LOCK:
            if not canonical.exists():
                return False
            retired = self._retired_path(Path(target_dir))
            os.replace(canonical, retired)
        shutil.rmtree(retired, ignore_errors=True)
        self._logger.info("distribution_uninstalled", path=str(canonical))
        return True

    def _extract(self, archive_path: Path, staging: Path) -> None:
        try:
            with zipfile.ZipFile(archive_path) as archive:
                for info in archive.infolist():
                    destination = staging / info.filename
                    if not lexically_contained(destination, staging):
                        raise ExtractionError(f"invalid zip entry: {info.filename}")
                    if info.is_dir():
                        destination.mkdir(parents=True, exist_ok=True)
                        continue
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as source, destination.open("wb") as sink:
                        shutil.copyfileobj(source, sink)
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and os.name != "nt":
                        destination.chmod(mode)
        except ExtractionError:
            raise
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ExtractionError(f"invalid distribution archive: {exc}") from exc
        except (NotImplementedError, RuntimeError) as exc:
            # Unknown compression methods and encrypted entries.
            raise ExtractionError(f"unsupported distribution archive: {exc}") from exc

    def _mark_executable(self, root: Path) -> None:
        if os.name == "nt":
            return
        executable = root / BIN_DIR_NAME / UNIX_EXECUTABLE_NAME
        if not executable.is_file():
            return
        try:
            executable.chmod(_EXECUTABLE_MODE)
        except OSError as exc:
            self._logger.warning("chmod_failed", path=str(executable), error=str(exc))

    def _swap_into_place(self, root: Path, target_dir: Path) -> Path:
        canonical = target_dir / CANONICAL_INSTALL_DIR_NAME
        retired: Path | None = None
        with _SWAP_LOCK:
            if canonical.exists():
                retired = self._retired_path(target_dir)
                os.replace(canonical, retired)
                _IN_FLIGHT.add(retired)
            try:
                os.replace(root, canonical)
            except OSError:
                if retired is not None:
                    os.replace(retired, canonical)
                    _IN_FLIGHT.discard(retired)
                raise

        if retired is not None:
            shutil.rmtree(retired, ignore_errors=True)
            with _SWAP_LOCK:
                _IN_FLIGHT.discard(retired)
            self._logger.info("previous_installation_removed", path=str(retired))
        return canonical

    def _remove_leftovers(self, target_dir: Path) -> None:
        # Work dirs are registered under the lock; unregistered ones are stale.
        with _SWAP_LOCK:
            stale = [
                entry
                for entry in target_dir.iterdir()
                if entry.is_dir()
                and entry.name.startswith((STAGING_DIR_PREFIX, RETIRED_DIR_PREFIX))
                and entry not in _IN_FLIGHT
            ]
        for entry in stale:
            shutil.rmtree(entry, ignore_errors=True)
            self._logger.info("stale_staging_removed", path=str(entry))

    def _discard(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)

    @staticmethod
    def _retired_path(target_dir: Path) -> Path:
        return target_dir / f"{RETIRED_DIR_PREFIX}{uuid.uuid4().hex}"


def detect_distribution_root(extracted: Path) -> Path | None:
    """Return ``extracted`` or a direct child that holds ``bin/jmeter[.bat]``."""
    if _is_distribution_root(extracted):
        return extracted
    for entry in sorted(extracted.iterdir()):
        if entry.is_dir() and _is_distribution_root(entry):
            return entry
    return None


def _is_distribution_root(directory: Path) -> bool:
    bin_dir = directory / BIN_DIR_NAME
    if not bin_dir.is_dir():
        return False
    return any((bin_dir / name).is_file() for name in EXECUTABLE_NAMES)


__all__ = [
    "DistributionInstaller",
    "INVALID_DISTRIBUTION_MESSAGE",
    "detect_distribution_root",
]
