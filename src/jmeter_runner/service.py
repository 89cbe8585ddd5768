"""
jmeter-runner — orchestration service

File: src/jmeter_runner/service.py

Purpose
- Composition root wiring installation, admission, supervision, registry,
  reports, and storage from ``RunnerSettings``; the boundary callers use.

Functional requirements
- ``install`` and ``clear_installation`` refuse to run while any execution is
  QUEUED or RUNNING. The check and the change hold one lock that ``submit``
  also takes, so no execution can be admitted in between.
- Persisted installation state is applied before anything queries it.
- Execution history is restored from the state DB only when persistence is on.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Final

import structlog

from jmeter_runner.config.loader import RunnerSettings
from jmeter_runner.domain.errors import InstallationConflict
from jmeter_runner.domain.models import (
    ExecutionRecord,
    ExecutionState,
    InstallationStatus,
    InstallResult,
    ReportInfo,
    VerificationResult,
)
from jmeter_runner.execution.admission import AdmissionController
from jmeter_runner.execution.registry import ExecutionRegistry, NowProvider
from jmeter_runner.execution.supervisor import ExecutionSupervisor
from jmeter_runner.installation.installer import DistributionInstaller
from jmeter_runner.installation.manager import InstallationManager
from jmeter_runner.persistence.repositories import ExecutionRepository, RecordStore
from jmeter_runner.persistence.state_db import StateDB
from jmeter_runner.reports.locator import ReportLocator
from jmeter_runner.storage.file_store import DirectoryFileStore

INSTALL_CONFLICT_MESSAGE: Final[str] = (
    "Cannot replace JMeter while test executions are active. "
    "Please wait for executions to complete."
)


class RunnerService:
    """Facade over the runner components for one storage root."""

    def __init__(
        self,
        settings: RunnerSettings,
        *,
        now_provider: NowProvider | None = None,
        windows: bool | None = None,
        kill_grace_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._installation_lock = threading.Lock()

        self._state_db = StateDB(settings.state_db)
        self._records = RecordStore(self._state_db)
        self._installation = InstallationManager(
            self._records,
            probe_timeout_seconds=settings.version_probe_timeout_seconds,
            windows=windows,
        )
        self._installer = DistributionInstaller()
        self._file_store = DirectoryFileStore(settings.uploads_dir)
        self._reports = ReportLocator(settings.reports_dir)

        repository = ExecutionRepository(self._state_db) if settings.persist_records else None
        self._registry = ExecutionRegistry(repository=repository, now_provider=now_provider)

        supervisor_options: dict[str, Any] = {}
        if kill_grace_seconds is not None:
            supervisor_options["kill_grace_seconds"] = kill_grace_seconds
        self._supervisor = ExecutionSupervisor(
            registry=self._registry,
            installation=self._installation,
            file_store=self._file_store,
            layout=self._reports,
            timeout_seconds=settings.timeout_seconds,
            **supervisor_options,
        )
        self._admission = AdmissionController(
            registry=self._registry,
            supervisor=self._supervisor,
            max_concurrent=settings.max_concurrent_executions,
            max_queued=settings.max_queued,
        )

        self._installation.load()
        restored = self._registry.restore()
        self._logger.info(
            "runner_service_ready",
            storage_root=str(settings.storage_root),
            configured=self._installation.is_configured(),
            restored_executions=restored,
        )

    @property
    def settings(self) -> RunnerSettings:
        return self._settings

    @property
    def file_store(self) -> DirectoryFileStore:
        return self._file_store

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    # Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        await self._admission.start()

    async def stop(self) -> None:
        await self._admission.stop()

    async def join(self) -> None:
        await self._admission.join()

    # Executions ------------------------------------------------------------

    def add_test_plan(self, path: Path) -> str:
        return self._file_store.add(path)

    def submit(self, source_file_id: str) -> str:
        """Queue an execution; waits while an installation change is in progress."""
        with self._installation_lock:
            return self._admission.submit(source_file_id)

    def get(self, execution_id: str) -> ExecutionRecord:
        return self._registry.get(execution_id)

    def list_all(self) -> list[ExecutionRecord]:
        return self._registry.list_all()

    def counts(self) -> dict[ExecutionState, int]:
        return self._registry.counts()

    def cancel(self, execution_id: str) -> ExecutionRecord:
        return self._admission.cancel(execution_id)

    def queue_position(self, execution_id: str) -> int:
        return self._admission.queue_position(execution_id)

    def clear_history(self) -> int:
        return self._registry.clear_history()

    def has_active_executions(self) -> bool:
        return self._admission.has_active_executions()

    # Installation ----------------------------------------------------------

    def installation_status(self) -> InstallationStatus:
        return self._installation.status()

    def verify_installation(self) -> VerificationResult:
        return self._installation.verify()

    def configure_installation(self, path: str | Path) -> InstallationStatus:
        with self._installation_change("configure"):
            self._installation.configure(path)
        return self._installation.status()

    def install(self, archive_bytes: bytes) -> InstallResult:
        """Extract a distribution archive into the install dir and configure it."""
        with self._installation_change("install"):
            canonical = self._installer.install_bytes(archive_bytes, self._settings.install_dir)
            state = self._installation.configure(canonical)
        return InstallResult(installation_path=str(canonical), version=state.version)

    def install_archive(self, archive_path: Path) -> InstallResult:
        with self._installation_change("install"):
            canonical = self._installer.install(archive_path, self._settings.install_dir)
            state = self._installation.configure(canonical)
        return InstallResult(installation_path=str(canonical), version=state.version)

    def clear_installation(self) -> None:
        """Forget the configured installation and remove the managed directory."""
        with self._installation_change("clear"):
            self._installation.clear()
            self._installer.uninstall(self._settings.install_dir)

    # Reports ---------------------------------------------------------------

    def locate_report(self, execution_id: str) -> Path | None:
        return self._reports.locate(execution_id)

    def package_report(self, execution_id: str) -> bytes:
        return self._reports.package_as_archive(execution_id)

    def list_reports(self) -> list[ReportInfo]:
        return self._reports.list_reports()

    def resolve_report_resource(self, execution_id: str, relative: str | None = None) -> Path:
        return self._reports.resolve_resource(execution_id, relative)

    def delete_report(self, execution_id: str) -> None:
        self._reports.delete_report(execution_id)

    @contextmanager
    def _installation_change(self, operation: str) -> Iterator[None]:
        with self._installation_lock:
            if self._admission.has_active_executions():
                self._logger.warning("installation_change_refused", operation=operation)
                raise InstallationConflict(INSTALL_CONFLICT_MESSAGE)
            yield


__all__ = ["INSTALL_CONFLICT_MESSAGE", "RunnerService"]
