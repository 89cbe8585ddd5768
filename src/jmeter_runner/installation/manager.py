"""
jmeter-runner — installation manager

File: src/jmeter_runner/installation/manager.py

Purpose
- Own the installation configuration (path + detected version) as the single
  writer, persist it under a fixed record key, and probe the configured binary.

Functional requirements
- ``configure`` rejects blank paths before any mutation.
- State is persisted on every change and reloaded once at startup.
- Version detection failures are non-fatal; the path stays usable.

Non-functional requirements
- Readers get immutable snapshots and never wait on a probe.
"""

from __future__ import annotations

import os
import re
import subprocess
import threading
from pathlib import Path
from typing import Any, Final, Protocol

import structlog

from jmeter_runner.constants import (
    BIN_DIR_NAME,
    INSTALLATION_STATE_KEY,
    UNIX_EXECUTABLE_NAME,
    VERSION_QUERY_ARG,
    WINDOWS_EXECUTABLE_NAME,
)
from jmeter_runner.domain.errors import InvalidConfiguration
from jmeter_runner.domain.models import (
    InstallationState,
    InstallationStatus,
    JSONValue,
    VerificationResult,
)

DEFAULT_PROBE_TIMEOUT_SECONDS: Final[float] = 30.0
NOT_CONFIGURED_MESSAGE: Final[str] = "JMeter is not configured"

_VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"\d+(?:\.\d+)+")


class KeyValueStore(Protocol):
    def save(self, key: str, payload: dict[str, JSONValue]) -> None: ...

    def load(self, key: str) -> dict[str, object] | None: ...

    def delete(self, key: str) -> bool: ...


def parse_version(text: str) -> str | None:
    """Return the first dotted version token (two or more digit groups) in ``text``."""
    match = _VERSION_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0)


def binary_name(*, windows: bool | None = None) -> str:
    is_windows = os.name == "nt" if windows is None else windows
    return WINDOWS_EXECUTABLE_NAME if is_windows else UNIX_EXECUTABLE_NAME


class InstallationManager:
    """Single-writer owner of :class:`InstallationState`."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        windows: bool | None = None,
        logger: Any | None = None,
    ) -> None:
        if probe_timeout_seconds <= 0:
            raise ValueError("probe_timeout_seconds must be > 0")
        self._store = store
        self._probe_timeout_seconds = probe_timeout_seconds
        self._binary_name = binary_name(windows=windows)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._write_lock = threading.Lock()
        self._state = InstallationState()

    @property
    def state(self) -> InstallationState:
        return self._state

    def load(self) -> InstallationState:
        """Apply the persisted record, if any, to in-memory state."""
        record = self._store.load(INSTALLATION_STATE_KEY)
        with self._write_lock:
            if record is None:
                self._state = InstallationState()
            else:
                try:
                    self._state = InstallationState.from_record(record)
                except ValueError as exc:
                    self._logger.warning(
                        "installation_state_invalid", key=INSTALLATION_STATE_KEY, error=str(exc)
                    )
                    self._state = InstallationState()
            state = self._state
        if state.is_configured:
            self._logger.info(
                "installation_state_loaded",
                path=state.installation_path,
                version=state.version,
            )
        return state

    def configure(self, path: str | os.PathLike[str]) -> InstallationState:
        """Store ``path``, probe it for a version, and persist the result."""
        raw = os.fspath(path) if not isinstance(path, str) else path
        if not raw or not raw.strip():
            raise InvalidConfiguration("installation path must not be empty")
        normalized = raw.strip()

        # The version query can take seconds; readers keep the previous state meanwhile.
        result = self._check_binary(Path(normalized) / BIN_DIR_NAME / self._binary_name)
        version = result.version if result.available else None
        state = InstallationState(installation_path=normalized, version=version)
        with self._write_lock:
            self._state = state
            self._store.save(INSTALLATION_STATE_KEY, state.to_record())

        self._logger.info("installation_configured", path=normalized, version=version)
        return state

    def resolve_binary_path(self) -> Path | None:
        root = self.installation_root()
        if root is None:
            return None
        return root / BIN_DIR_NAME / self._binary_name

    def installation_root(self) -> Path | None:
        state = self._state
        if not state.is_configured or state.installation_path is None:
            return None
        return Path(state.installation_path)

    def is_configured(self) -> bool:
        return self._state.is_configured

    def status(self) -> InstallationStatus:
        state = self._state
        return InstallationStatus(
            configured=state.is_configured,
            path=state.installation_path if state.is_configured else None,
            version=state.version if state.is_configured else None,
        )

    def verify(self) -> VerificationResult:
        binary = self.resolve_binary_path()
        if binary is None:
            return VerificationResult(available=False, error=NOT_CONFIGURED_MESSAGE)
        return self._check_binary(binary)

    def _check_binary(self, binary: Path) -> VerificationResult:
        if not binary.is_file():
            return VerificationResult(
                available=False,
                path=str(binary),
                error=f"JMeter binary not found at: {binary}",
            )
        if not os.access(binary, os.X_OK):
            return VerificationResult(
                available=False,
                path=str(binary),
                error=f"JMeter binary is not executable: {binary}",
            )
        return VerificationResult(
            available=True,
            path=str(binary),
            version=self._probe_version(binary),
        )

    def clear(self) -> None:
        """Forget the installation and delete the persisted record; idempotent."""
        with self._write_lock:
            self._state = InstallationState()
            self._store.delete(INSTALLATION_STATE_KEY)
        self._logger.info("installation_cleared")

    def _probe_version(self, binary: Path) -> str | None:
        command = [str(binary), VERSION_QUERY_ARG]
        try:
            completed = subprocess.run(
                command,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                timeout=self._probe_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            self._logger.warning(
                "version_probe_timed_out",
                binary=str(binary),
                timeout_seconds=self._probe_timeout_seconds,
            )
            return None
        except OSError as exc:
            self._logger.warning("version_probe_failed", binary=str(binary), error=str(exc))
            return None

        if completed.returncode != 0:
            self._logger.warning(
                "version_probe_nonzero_exit",
                binary=str(binary),
                exit_code=completed.returncode,
            )
            return None

        version = parse_version(completed.stdout or "")
        if version is None:
            self._logger.warning("version_unparsable", binary=str(binary))
        return version


__all__ = [
    "DEFAULT_PROBE_TIMEOUT_SECONDS",
    "InstallationManager",
    "KeyValueStore",
    "NOT_CONFIGURED_MESSAGE",
    "binary_name",
    "parse_version",
]
