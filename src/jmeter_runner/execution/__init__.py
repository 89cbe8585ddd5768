"""Execution admission, supervision, and record ownership."""

from jmeter_runner.execution.admission import AdmissionController
from jmeter_runner.execution.registry import (
    INTERRUPTED_MESSAGE,
    ExecutionRegistry,
    ExecutionStore,
)
from jmeter_runner.execution.supervisor import (
    ExecutionSupervisor,
    Supervisor,
    build_command,
    kill_process_tree,
)

__all__ = [
    "AdmissionController",
    "ExecutionRegistry",
    "ExecutionStore",
    "ExecutionSupervisor",
    "INTERRUPTED_MESSAGE",
    "Supervisor",
    "build_command",
    "kill_process_tree",
]
