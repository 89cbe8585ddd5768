"""Error taxonomy shared by the installation and execution components."""

from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for classified runner failures."""


class InvalidConfiguration(RunnerError, ValueError):
    """Raised when installation path input is missing or malformed."""


class NotConfigured(RunnerError):
    """Raised when an operation requires an installation that is not set."""


class ExtractionError(RunnerError):
    """Raised when a distribution archive is malformed or structurally invalid."""


class ProcessLaunchError(RunnerError):
    """Raised when the external binary exists but could not be started."""


class NotFound(RunnerError, LookupError):
    """Raised for unknown execution, report, or source file references."""


class InvalidStateTransition(RunnerError):
    """Raised when a record would leave the monotone execution state machine."""


class InstallationConflict(RunnerError):
    """Raised when install or clear is requested while executions are active."""


class QueueFullError(RunnerError):
    """Raised when a bounded admission queue rejects a submission."""


__all__ = [
    "ExtractionError",
    "InstallationConflict",
    "InvalidConfiguration",
    "InvalidStateTransition",
    "NotConfigured",
    "NotFound",
    "ProcessLaunchError",
    "QueueFullError",
    "RunnerError",
]
