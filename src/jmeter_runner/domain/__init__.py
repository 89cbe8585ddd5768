"""Domain types, identifiers, and the error taxonomy."""

from __future__ import annotations

from jmeter_runner.domain.errors import (
    ExtractionError,
    InstallationConflict,
    InvalidConfiguration,
    InvalidStateTransition,
    NotConfigured,
    NotFound,
    ProcessLaunchError,
    QueueFullError,
    RunnerError,
)
from jmeter_runner.domain.models import (
    ExecutionRecord,
    ExecutionState,
    InstallationState,
    InstallationStatus,
    InstallResult,
    ReportInfo,
    VerificationResult,
)

__all__ = [
    "ExecutionRecord",
    "ExecutionState",
    "ExtractionError",
    "InstallResult",
    "InstallationConflict",
    "InstallationState",
    "InstallationStatus",
    "InvalidConfiguration",
    "InvalidStateTransition",
    "NotConfigured",
    "NotFound",
    "ProcessLaunchError",
    "QueueFullError",
    "ReportInfo",
    "RunnerError",
    "VerificationResult",
]
