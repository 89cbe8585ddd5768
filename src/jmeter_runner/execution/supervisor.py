"""
jmeter-runner — execution supervisor

File: src/jmeter_runner/execution/supervisor.py

Purpose
- Run exactly one external JMeter process per dispatched execution and
  resolve its record to a terminal state.

Functional requirements
- Failures before a live process exists (not configured, unknown test plan,
  launch error) resolve QUEUED -> FAILED and never enter RUNNING.
- Exit code 0 -> COMPLETED with the dashboard path when one was produced;
  any other code -> FAILED with the code embedded in the message.
- Merged stdout/stderr is streamed to ``console.log`` in the run directory.
- Termination kills the whole process tree. No retries.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Protocol

import psutil
import structlog

from jmeter_runner.constants import (
    CANCELLED_MESSAGE,
    CONSOLE_LOG_FILE_NAME,
    ENGINE_LOG_FILE_NAME,
    RESULTS_FILE_NAME,
)
from jmeter_runner.domain.errors import (
    InvalidStateTransition,
    NotConfigured,
    NotFound,
    ProcessLaunchError,
)
from jmeter_runner.domain.models import ExecutionRecord
from jmeter_runner.execution.registry import ExecutionRegistry
from jmeter_runner.installation.manager import NOT_CONFIGURED_MESSAGE
from jmeter_runner.observability.logging import execution_scope
from jmeter_runner.utils.concurrency import StopSignal, wait_for_exit

DEFAULT_KILL_GRACE_SECONDS: Final[float] = 5.0
OUTPUT_CHUNK_BYTES: Final[int] = 65536
MAX_LOGGED_LINE_BYTES: Final[int] = 4096


class BinaryResolver(Protocol):
    def resolve_binary_path(self) -> Path | None: ...


class PlanResolver(Protocol):
    def resolve(self, source_file_id: str) -> Path: ...


class OutputLayout(Protocol):
    def run_dir_for(self, execution_id: str) -> Path: ...

    def report_dir_for(self, execution_id: str) -> Path: ...


class Supervisor(Protocol):
    async def supervise(self, execution_id: str) -> ExecutionRecord: ...

    def terminate(self, execution_id: str) -> bool: ...


@dataclass(slots=True)
class _ActiveProcess:
    process: asyncio.subprocess.Process
    stop: StopSignal


def build_command(binary: Path, plan: Path, run_dir: Path, report_dir: Path) -> list[str]:
    """Non-GUI run writing results, engine log, and the HTML dashboard under ``run_dir``."""
    return [
        str(binary),
        "-n",
        "-t",
        str(plan),
        "-l",
        str(run_dir / RESULTS_FILE_NAME),
        "-j",
        str(run_dir / ENGINE_LOG_FILE_NAME),
        "-e",
        "-o",
        str(report_dir),
    ]


def kill_process_tree(pid: int) -> list[psutil.Process]:
    """Kill ``pid`` and its descendants, children first; returns the signalled processes."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []
    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    signalled: list[psutil.Process] = []
    for proc in [*children, parent]:
        with suppress(psutil.NoSuchProcess):
            proc.kill()
            signalled.append(proc)
    return signalled


class ExecutionSupervisor:
    """Launches and supervises JMeter processes for dispatched executions."""

    def __init__(
        self,
        *,
        registry: ExecutionRegistry,
        installation: BinaryResolver,
        file_store: PlanResolver,
        layout: OutputLayout,
        timeout_seconds: float | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0 when set")
        self._registry = registry
        self._installation = installation
        self._file_store = file_store
        self._layout = layout
        self._timeout_seconds = timeout_seconds
        self._kill_grace_seconds = kill_grace_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._active: dict[str, _ActiveProcess] = {}

    def active_ids(self) -> list[str]:
        return sorted(self._active)

    def terminate(self, execution_id: str) -> bool:
        """Kill the live process tree for ``execution_id``; ``False`` if none is running."""
        active = self._active.get(execution_id)
        if active is None or active.process.returncode is not None:
            self._logger.warning("no_active_process", execution_id=execution_id)
            return False
        active.stop.trigger()
        kill_process_tree(active.process.pid)
        self._logger.info("process_terminated", execution_id=execution_id, pid=active.process.pid)
        return True

    async def supervise(self, execution_id: str) -> ExecutionRecord:
        with execution_scope(execution_id=execution_id):
            return await self._supervise(execution_id)

    async def _supervise(self, execution_id: str) -> ExecutionRecord:
        record = self._registry.get(execution_id)

        binary = self._installation.resolve_binary_path()
        if binary is None:
            error = NotConfigured(NOT_CONFIGURED_MESSAGE)
            self._logger.warning("execution_not_configured")
            return self._fail(execution_id, str(error))

        try:
            plan = self._file_store.resolve(record.source_file_id)
        except NotFound as exc:
            self._logger.warning("test_plan_missing", source_file_id=record.source_file_id)
            return self._fail(execution_id, str(exc))

        run_dir = self._layout.run_dir_for(execution_id)
        report_dir = self._layout.report_dir_for(execution_id)
        command = build_command(binary, plan, run_dir, report_dir)
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(run_dir),
            )
        except OSError as exc:
            error = ProcessLaunchError(f"failed to launch JMeter: {exc}")
            self._logger.error("process_launch_failed", binary=str(binary), error=str(exc))
            return self._fail(execution_id, str(error))

        stop = StopSignal()
        self._active[execution_id] = _ActiveProcess(process=process, stop=stop)
        try:
            try:
                self._registry.mark_running(execution_id)
            except InvalidStateTransition:
                # Cancelled between dispatch and launch.
                await self._reap(process)
                return self._registry.get(execution_id)

            self._logger.info("process_started", pid=process.pid, command=command)
            return await self._await_exit(execution_id, process, stop, run_dir, report_dir)
        finally:
            self._active.pop(execution_id, None)

    async def _await_exit(
        self,
        execution_id: str,
        process: asyncio.subprocess.Process,
        stop: StopSignal,
        run_dir: Path,
        report_dir: Path,
    ) -> ExecutionRecord:
        console_log = run_dir / CONSOLE_LOG_FILE_NAME
        try:
            exit_code = await wait_for_exit(
                self._pump_output(process, console_log),
                stop=stop,
                timeout_seconds=self._timeout_seconds,
            )
        except TimeoutError:
            await self._reap(process)
            self._logger.warning("execution_timed_out", timeout_seconds=self._timeout_seconds)
            return self._fail(
                execution_id, f"timed out after {_format_seconds(self._timeout_seconds)} seconds"
            )
        except asyncio.CancelledError:
            await self._reap(process)
            self._fail(execution_id, CANCELLED_MESSAGE, cancelled=True)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return self._registry.get(execution_id)
        except Exception as exc:
            await self._reap(process)
            self._logger.exception("process_output_failed")
            return self._fail(execution_id, f"failed to read JMeter output: {exc}")

        self._logger.info("process_exited", exit_code=exit_code)
        if exit_code == 0:
            report_path = str(report_dir) if report_dir.is_dir() else None
            if report_path is None:
                self._logger.warning("report_missing", expected=str(report_dir))
            return self._finish(
                lambda: self._registry.mark_completed(
                    execution_id, exit_code=0, report_path=report_path
                ),
                execution_id,
            )
        return self._fail(
            execution_id,
            f"JMeter execution failed with exit code: {exit_code}",
            exit_code=exit_code,
        )

    async def _pump_output(self, process: asyncio.subprocess.Process, console_log: Path) -> int:
        stream = process.stdout
        if stream is not None:
            pending = b""
            with console_log.open("ab") as sink:
                while chunk := await stream.read(OUTPUT_CHUNK_BYTES):
                    sink.write(chunk)
                    sink.flush()
                    *lines, pending = (pending + chunk).split(b"\n")
                    for line in lines:
                        self._log_output(line)
                    if len(pending) > OUTPUT_CHUNK_BYTES:
                        # No newline within a whole chunk; flush what is buffered.
                        self._log_output(pending)
                        pending = b""
            if pending:
                self._log_output(pending)
        return await process.wait()

    def _log_output(self, raw_line: bytes) -> None:
        self._logger.debug(
            "jmeter_output",
            line=raw_line[:MAX_LOGGED_LINE_BYTES].decode("utf-8", errors="replace").rstrip(),
        )

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            kill_process_tree(process.pid)
        with suppress(TimeoutError, ProcessLookupError):
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_seconds)

    def _fail(
        self,
        execution_id: str,
        message: str,
        *,
        exit_code: int | None = None,
        cancelled: bool = False,
    ) -> ExecutionRecord:
        return self._finish(
            lambda: self._registry.mark_failed(
                execution_id,
                error_message=message,
                exit_code=exit_code,
                cancelled=cancelled,
            ),
            execution_id,
        )

    def _finish(self, transition: Any, execution_id: str) -> ExecutionRecord:
        try:
            record: ExecutionRecord = transition()
        except InvalidStateTransition:
            # Already resolved elsewhere, e.g. by a cancel request.
            record = self._registry.get(execution_id)
            self._logger.debug("execution_already_resolved", state=record.state.value)
            return record
        self._logger.info(
            "execution_finished",
            state=record.state.value,
            exit_code=record.exit_code,
            error=record.error_message,
        )
        return record


def _format_seconds(value: float | None) -> str:
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


__all__ = [
    "BinaryResolver",
    "DEFAULT_KILL_GRACE_SECONDS",
    "ExecutionSupervisor",
    "OutputLayout",
    "PlanResolver",
    "Supervisor",
    "build_command",
    "kill_process_tree",
]
