"""Process supervision tests driven by a shell-script stand-in for JMeter."""

from __future__ import annotations

import asyncio
import os
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

from jmeter_runner.domain.models import ExecutionRecord, ExecutionState
from jmeter_runner.execution.registry import ExecutionRegistry
from jmeter_runner.execution.supervisor import (
    ExecutionSupervisor,
    build_command,
    kill_process_tree,
)
from jmeter_runner.reports.locator import ReportLocator
from jmeter_runner.storage.file_store import DirectoryFileStore

posix_only = pytest.mark.skipif(os.name == "nt", reason="fake JMeter is a POSIX shell script")


class _Installation:
    def __init__(self, binary: Path | None) -> None:
        self.binary = binary

    def resolve_binary_path(self) -> Path | None:
        return self.binary


@dataclass
class _Harness:
    registry: ExecutionRegistry
    store: DirectoryFileStore
    reports: ReportLocator
    installation: _Installation
    tmp_path: Path
    write_plan: Callable[..., Path]

    def supervisor(self, **options: object) -> ExecutionSupervisor:
        return ExecutionSupervisor(
            registry=self.registry,
            installation=self.installation,
            file_store=self.store,
            layout=self.reports,
            kill_grace_seconds=2.0,
            **options,  # type: ignore[arg-type]
        )

    def submit(self, **plan_options: object) -> ExecutionRecord:
        plan = self.write_plan(self.tmp_path / "plans", **plan_options)
        return self.registry.create(self.store.add(plan))


@pytest.fixture
def harness(
    tmp_path: Path,
    write_fake_jmeter: Callable[..., Path],
    write_plan: Callable[..., Path],
) -> _Harness:
    binary = write_fake_jmeter(tmp_path / "apache-jmeter-5.6.3")
    return _Harness(
        registry=ExecutionRegistry(),
        store=DirectoryFileStore(tmp_path / "uploads"),
        reports=ReportLocator(tmp_path / "reports"),
        installation=_Installation(binary),
        tmp_path=tmp_path,
        write_plan=write_plan,
    )


async def _wait_for_state(
    registry: ExecutionRegistry, execution_id: str, state: ExecutionState
) -> None:
    async def _poll() -> None:
        while registry.get(execution_id).state is not state:
            await asyncio.sleep(0.02)

    await asyncio.wait_for(_poll(), timeout=10.0)


def test_build_command_runs_non_gui_with_dashboard(tmp_path: Path) -> None:
    run_dir = tmp_path / "reports" / "id"

    command = build_command(
        Path("/opt/jmeter/bin/jmeter"), Path("/plans/a.jmx"), run_dir, run_dir / "dashboard"
    )

    assert command == [
        "/opt/jmeter/bin/jmeter",
        "-n",
        "-t",
        "/plans/a.jmx",
        "-l",
        str(run_dir / "results.jtl"),
        "-j",
        str(run_dir / "jmeter.log"),
        "-e",
        "-o",
        str(run_dir / "dashboard"),
    ]


@posix_only
def test_kill_process_tree_ignores_missing_process() -> None:
    finished = subprocess.Popen(["true"])
    finished.wait()

    assert kill_process_tree(finished.pid) == []


def test_timeout_must_be_positive(harness: _Harness) -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        harness.supervisor(timeout_seconds=0)


@posix_only
async def test_successful_run_completes_with_dashboard(harness: _Harness) -> None:
    record = harness.submit()

    result = await harness.supervisor().supervise(record.id)

    run_dir = harness.tmp_path / "reports" / record.id
    assert result.state is ExecutionState.COMPLETED
    assert result.exit_code == 0
    assert result.report_path == str(run_dir / "dashboard")
    assert (run_dir / "dashboard" / "index.html").is_file()
    console = (run_dir / "console.log").read_text()
    assert "Creating summariser" in console
    assert "warning from stderr" in console
    assert harness.registry.get(record.id) == result


@posix_only
async def test_success_without_dashboard_has_no_report_path(harness: _Harness) -> None:
    record = harness.submit(report=False)

    result = await harness.supervisor().supervise(record.id)

    assert result.state is ExecutionState.COMPLETED
    assert result.report_path is None


@posix_only
async def test_non_zero_exit_fails_with_code(harness: _Harness) -> None:
    record = harness.submit(exit_code=3)

    result = await harness.supervisor().supervise(record.id)

    assert result.state is ExecutionState.FAILED
    assert result.exit_code == 3
    assert result.error_message == "JMeter execution failed with exit code: 3"
    assert result.started_at is not None
    assert not result.cancelled


async def test_unconfigured_installation_fails_before_running(harness: _Harness) -> None:
    harness.installation.binary = None
    record = harness.submit()

    result = await harness.supervisor().supervise(record.id)

    assert result.state is ExecutionState.FAILED
    assert result.error_message == "JMeter is not configured"
    assert result.started_at is None
    assert not (harness.tmp_path / "reports" / record.id).exists()


async def test_missing_test_plan_fails_before_running(harness: _Harness) -> None:
    record = harness.registry.create("0123456789abcdef0123456789abcdef")

    result = await harness.supervisor().supervise(record.id)

    assert result.state is ExecutionState.FAILED
    assert result.error_message is not None
    assert result.error_message.startswith("test plan not found")
    assert result.started_at is None


@posix_only
async def test_launch_error_fails_before_running(
    harness: _Harness, write_fake_jmeter: Callable[..., Path]
) -> None:
    harness.installation.binary = write_fake_jmeter(
        harness.tmp_path / "broken", executable=False
    )
    record = harness.submit()

    result = await harness.supervisor().supervise(record.id)

    assert result.state is ExecutionState.FAILED
    assert result.error_message is not None
    assert result.error_message.startswith("failed to launch JMeter:")
    assert result.started_at is None


@posix_only
async def test_timeout_kills_process_and_fails(harness: _Harness) -> None:
    record = harness.submit(delay=30)
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await harness.supervisor(timeout_seconds=0.5).supervise(record.id)

    assert loop.time() - started < 10
    assert result.state is ExecutionState.FAILED
    assert result.error_message == "timed out after 0.5 seconds"
    assert not result.cancelled


@posix_only
async def test_terminate_kills_running_process(harness: _Harness) -> None:
    record = harness.submit(delay=30)
    supervisor = harness.supervisor()
    task = asyncio.create_task(supervisor.supervise(record.id))
    await _wait_for_state(harness.registry, record.id, ExecutionState.RUNNING)
    assert supervisor.active_ids() == [record.id]

    harness.registry.mark_failed(record.id, error_message="cancelled", cancelled=True)
    assert supervisor.terminate(record.id)
    result = await asyncio.wait_for(task, timeout=10)

    assert result.state is ExecutionState.FAILED
    assert result.cancelled
    assert result.error_message == "cancelled"
    assert supervisor.active_ids() == []
    assert not supervisor.terminate(record.id)


@posix_only
async def test_task_cancellation_reaps_process_and_records_cancel(harness: _Harness) -> None:
    record = harness.submit(delay=30)
    supervisor = harness.supervisor()
    task = asyncio.create_task(supervisor.supervise(record.id))
    await _wait_for_state(harness.registry, record.id, ExecutionState.RUNNING)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=10)

    result = harness.registry.get(record.id)
    assert result.state is ExecutionState.FAILED
    assert result.cancelled
    assert supervisor.active_ids() == []


async def test_terminate_unknown_execution_returns_false(harness: _Harness) -> None:
    assert not harness.supervisor().terminate("2026-02-01T12-00-00-000000001")


@posix_only
async def test_output_line_longer_than_stream_limit_still_completes(harness: _Harness) -> None:
    binary = harness.tmp_path / "chatty" / "bin" / "jmeter"
    binary.parent.mkdir(parents=True)
    binary.write_text(
        "#!/bin/sh\n"
        "head -c 100000 /dev/zero | tr '\\0' x\n"
        "echo\n"
        "echo done\n"
        "exit 0\n"
    )
    binary.chmod(0o755)
    harness.installation.binary = binary
    record = harness.submit()

    result = await asyncio.wait_for(harness.supervisor().supervise(record.id), timeout=10)

    assert result.state is ExecutionState.COMPLETED
    assert result.exit_code == 0
    console = (harness.tmp_path / "reports" / record.id / "console.log").read_bytes()
    assert console.count(b"x") == 100_000
    assert console.endswith(b"done\n")


@posix_only
async def test_output_capture_failure_reaps_process_and_fails(harness: _Harness) -> None:
    record = harness.submit(delay=30)
    (harness.tmp_path / "reports" / record.id / "console.log").mkdir(parents=True)
    supervisor = harness.supervisor()
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await asyncio.wait_for(supervisor.supervise(record.id), timeout=10)

    assert loop.time() - started < 10
    assert result.state is ExecutionState.FAILED
    assert result.error_message is not None
    assert result.error_message.startswith("failed to read JMeter output:")
    assert result.started_at is not None
    assert supervisor.active_ids() == []
