"""Command-line interface router for jmeter-runner."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from jmeter_runner.config import (
    ConfigLoadError,
    ConfigValidationError,
    RunnerSettings,
    load_config,
    redact_config,
)
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
from jmeter_runner.domain.models import ExecutionRecord, ExecutionState
from jmeter_runner.main import ExitCode
from jmeter_runner.observability.logging import setup_logging, shutdown_logging
from jmeter_runner.service import RunnerService
from jmeter_runner.ui.render import CLIRenderer, create_renderer
from jmeter_runner.utils.fs import write_file_atomically


_ERROR_EXIT_CODES: Final[tuple[tuple[type[RunnerError], int], ...]] = (
    (InstallationConflict, ExitCode.CONFLICT),
    (QueueFullError, ExitCode.CONFLICT),
    (InvalidStateTransition, ExitCode.CONFLICT),
    (InvalidConfiguration, ExitCode.CONFIG_ERROR),
    (NotConfigured, ExitCode.CONFIG_ERROR),
    (ExtractionError, ExitCode.EXECUTION_FAILED),
    (ProcessLaunchError, ExitCode.EXECUTION_FAILED),
    (NotFound, ExitCode.EXECUTION_FAILED),
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.EXECUTION_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="jmeter-runner",
        description=(
            "jmeter-runner — run JMeter test plans against a managed installation.\n\n"
            "Common workflows:\n"
            "  jmeter-runner install apache-jmeter-5.6.3.zip   Install a distribution\n"
            "  jmeter-runner run plan.jmx                      Run a test plan\n"
            "  jmeter-runner reports                           List generated reports\n"
            "  jmeter-runner status                            Show installation status\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./jmeter-runner.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log to stderr at debug level.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show installation status and execution counts",
    )
    status_parser.set_defaults(handler=_cmd_status)

    install_parser = subparsers.add_parser(
        "install",
        parents=[common],
        help="Install a JMeter distribution from a ZIP archive",
        description=(
            "Extract a JMeter distribution and make it the active installation.\n\n"
            "Examples:\n"
            "  jmeter-runner install apache-jmeter-5.6.3.zip\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    install_parser.add_argument("archive", help="Path to the distribution ZIP archive")
    install_parser.set_defaults(handler=_cmd_install)

    configure_parser = subparsers.add_parser(
        "configure",
        parents=[common],
        help="Use an existing JMeter installation directory",
    )
    configure_parser.add_argument("path", help="JMeter home directory (contains bin/)")
    configure_parser.set_defaults(handler=_cmd_configure)

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        parents=[common],
        help="Forget the installation and remove the managed distribution",
    )
    uninstall_parser.set_defaults(handler=_cmd_uninstall)

    verify_parser = subparsers.add_parser(
        "verify",
        parents=[common],
        help="Check that the configured JMeter binary is usable",
    )
    verify_parser.set_defaults(handler=_cmd_verify)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run one or more test plans and wait for them to finish",
        description=(
            "Submit test plans, dispatch them under the concurrency limit, and wait.\n\n"
            "Examples:\n"
            "  jmeter-runner run plan.jmx\n"
            "  jmeter-runner run a.jmx b.jmx --max-concurrent 1\n"
            "  jmeter-runner run plan.jmx --timeout 600 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("plans", nargs="+", help="Test plan (.jmx) paths")
    run_parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Override jmeter.max_concurrent_executions",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Override execution.timeout_seconds (0 disables)",
    )
    run_parser.set_defaults(handler=_cmd_run)

    executions_parser = subparsers.add_parser(
        "executions",
        parents=[common],
        help="List persisted execution history",
    )
    executions_parser.add_argument(
        "--clear",
        action="store_true",
        default=False,
        help="Remove finished executions from the history",
    )
    executions_parser.set_defaults(handler=_cmd_executions)

    report_parser = subparsers.add_parser(
        "report",
        parents=[common],
        help="Locate, download, or delete the report of one execution",
        description=(
            "Examples:\n"
            "  jmeter-runner report <execution-id>\n"
            "  jmeter-runner report <execution-id> --output report.zip\n"
            "  jmeter-runner report <execution-id> --delete\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    report_parser.add_argument("execution_id", help="Execution id")
    report_action = report_parser.add_mutually_exclusive_group()
    report_action.add_argument("--output", default=None, help="Write the report as a ZIP archive")
    report_action.add_argument(
        "--delete", action="store_true", default=False, help="Delete the report directory"
    )
    report_parser.set_defaults(handler=_cmd_report)

    reports_parser = subparsers.add_parser(
        "reports",
        parents=[common],
        help="List generated reports, newest first",
    )
    reports_parser.set_defaults(handler=_cmd_reports)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return ExitCode.CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    except RunnerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exit_code_for(exc)
    finally:
        shutdown_logging()
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


def exit_code_for(exc: RunnerError) -> int:
    for error_type, code in _ERROR_EXIT_CODES:
        if isinstance(exc, error_type):
            return code
    return ExitCode.EXECUTION_FAILED


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_status(args: argparse.Namespace) -> int:
    service = _open_service(args)
    status = service.installation_status()
    counts = service.counts()

    payload: dict[str, object] = {
        "command": "status",
        "installation": status.to_dict(),
        "executions": {state.value: count for state, count in counts.items()},
        "max_concurrent_executions": service.settings.max_concurrent_executions,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.heading("JMeter installation")
    renderer.kv("Configured", "yes" if status.configured else "no")
    if status.configured:
        renderer.kv("Path", status.path)
        renderer.kv("Version", status.version or "unknown")
    renderer.kv("Max concurrent executions", service.settings.max_concurrent_executions)
    if any(counts.values()):
        renderer.section("Executions:")
        for state, count in counts.items():
            renderer.kv(f"  {state.value}", count)
    if not status.configured:
        renderer.next_steps(["jmeter-runner install <apache-jmeter.zip>"])
    return ExitCode.SUCCESS


def _cmd_install(args: argparse.Namespace) -> int:
    archive = Path(_require_str(getattr(args, "archive", None), "archive")).expanduser()
    if not archive.is_file():
        raise CLIError(f"archive not found: {archive}", exit_code=ExitCode.CONFIG_ERROR)

    service = _open_service(args)
    result = service.install_archive(archive)

    if _flag(args, "json"):
        _emit_json({"command": "install", **result.to_dict()})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.ok("JMeter installed")
    renderer.kv("Path", result.installation_path)
    renderer.kv("Version", result.version or "unknown")
    if result.version is None:
        renderer.warning("version could not be detected; run `jmeter-runner verify`")
    return ExitCode.SUCCESS


def _cmd_configure(args: argparse.Namespace) -> int:
    service = _open_service(args)
    status = service.configure_installation(_require_str(getattr(args, "path", None), "path"))
    verification = service.verify_installation()

    payload: dict[str, object] = {
        "command": "configure",
        "installation": status.to_dict(),
        "verification": verification.to_dict(),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return ExitCode.SUCCESS if verification.available else ExitCode.EXECUTION_FAILED

    renderer = _get_renderer(args)
    renderer.kv("Path", status.path)
    renderer.kv("Version", status.version or "unknown")
    _render_verification(renderer, verification.available, verification.error)
    return ExitCode.SUCCESS if verification.available else ExitCode.EXECUTION_FAILED


def _cmd_uninstall(args: argparse.Namespace) -> int:
    service = _open_service(args)
    was_configured = service.installation_status().configured
    service.clear_installation()

    if _flag(args, "json"):
        _emit_json({"command": "uninstall", "was_configured": was_configured})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if was_configured:
        renderer.ok("JMeter installation removed")
    else:
        renderer.text("No JMeter installation was configured.")
    return ExitCode.SUCCESS


def _cmd_verify(args: argparse.Namespace) -> int:
    service = _open_service(args)
    result = service.verify_installation()
    exit_code = ExitCode.SUCCESS if result.available else ExitCode.EXECUTION_FAILED

    if _flag(args, "json"):
        _emit_json({"command": "verify", **result.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    if result.path is not None:
        renderer.kv("Binary", result.path)
    if result.available:
        renderer.kv("Version", result.version or "unknown")
    _render_verification(renderer, result.available, result.error)
    return exit_code


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {
        "jmeter.max_concurrent_executions": getattr(args, "max_concurrent", None),
        "execution.timeout_seconds": getattr(args, "timeout", None),
    }
    service = _open_service(args, overrides=overrides)
    plans = [Path(raw).expanduser() for raw in _string_sequence(getattr(args, "plans", ()))]
    file_ids = [service.add_test_plan(plan) for plan in plans]

    records = asyncio.run(_run_to_completion(service, file_ids))
    failed = [record for record in records if record.state is not ExecutionState.COMPLETED]

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "run",
                "executions": [record.to_dict() for record in records],
                "failed": len(failed),
            }
        )
        return ExitCode.EXECUTION_FAILED if failed else ExitCode.SUCCESS

    renderer = _get_renderer(args)
    _render_records(renderer, records, plans=plans)
    if failed:
        renderer.section("Failures:")
        renderer.items([f"{record.id}: {record.error_message}" for record in failed])
    return ExitCode.EXECUTION_FAILED if failed else ExitCode.SUCCESS


def _cmd_executions(args: argparse.Namespace) -> int:
    service = _open_service(args)
    removed = service.clear_history() if _flag(args, "clear") else None
    records = service.list_all()

    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "executions",
            "persisted": service.settings.persist_records,
            "executions": [record.to_dict() for record in records],
        }
        if removed is not None:
            payload["removed"] = removed
        _emit_json(payload)
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if not service.settings.persist_records:
        renderer.warning("execution.persist_records is off; history is not kept between runs")
    if removed is not None:
        renderer.kv("Removed", removed)
    if not records:
        renderer.text("No executions recorded.")
        return ExitCode.SUCCESS
    _render_records(renderer, records)
    return ExitCode.SUCCESS


def _cmd_report(args: argparse.Namespace) -> int:
    service = _open_service(args)
    execution_id = _require_str(getattr(args, "execution_id", None), "execution_id")
    output = _optional_str(getattr(args, "output", None))
    renderer = _get_renderer(args)

    if _flag(args, "delete"):
        service.delete_report(execution_id)
        if _flag(args, "json"):
            _emit_json({"command": "report", "execution_id": execution_id, "deleted": True})
        else:
            renderer.ok(f"Report deleted: {execution_id}")
        return ExitCode.SUCCESS

    if output is not None:
        archive = service.package_report(execution_id)
        destination = Path(output).expanduser().resolve()
        destination.parent.mkdir(parents=True, exist_ok=True)
        write_file_atomically(destination, archive)
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "report",
                    "execution_id": execution_id,
                    "archive": str(destination),
                    "size_bytes": len(archive),
                }
            )
        else:
            renderer.ok(f"Report written to {destination}")
        return ExitCode.SUCCESS

    location = service.locate_report(execution_id)
    if location is None:
        raise NotFound(f"report not found: {execution_id}")
    index = service.resolve_report_resource(execution_id)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "report",
                "execution_id": execution_id,
                "path": str(location),
                "index": str(index),
            }
        )
    else:
        renderer.kv("Report", location)
        renderer.kv("Index", index)
    return ExitCode.SUCCESS


def _cmd_reports(args: argparse.Namespace) -> int:
    service = _open_service(args)
    reports = service.list_reports()

    if _flag(args, "json"):
        _emit_json({"command": "reports", "reports": [report.to_dict() for report in reports]})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if not reports:
        renderer.text("No reports found.")
        return ExitCode.SUCCESS
    renderer.table(
        ("EXECUTION", "CREATED", "SIZE", "PATH"),
        [
            (
                report.execution_id,
                report.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                _human_size(report.size_bytes),
                report.path,
            )
            for report in reports
        ],
        title="Reports:",
    )
    return ExitCode.SUCCESS


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = redact_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run_to_completion(
    service: RunnerService, file_ids: Sequence[str]
) -> list[ExecutionRecord]:
    await service.start()
    try:
        execution_ids = [service.submit(file_id) for file_id in file_ids]
        await service.join()
    finally:
        await service.stop()
    return [service.get(execution_id) for execution_id in execution_ids]


def _render_records(
    renderer: CLIRenderer,
    records: Sequence[ExecutionRecord],
    *,
    plans: Sequence[Path] | None = None,
) -> None:
    headers = ["EXECUTION", "STATE", "EXIT", "DURATION", "REPORT"]
    if plans is not None:
        headers.insert(1, "PLAN")
    rows: list[list[str]] = []
    for index, record in enumerate(records):
        duration = record.duration_seconds
        row = [
            record.id,
            renderer.state(record.state.value),
            "" if record.exit_code is None else str(record.exit_code),
            "" if duration is None else f"{duration}s",
            record.report_path or "",
        ]
        if plans is not None:
            row.insert(1, plans[index].name if index < len(plans) else "")
        rows.append(row)
    state_column = 2 if plans is not None else 1
    renderer.table(headers, rows, title="Executions:", markup_columns=(state_column,))


def _render_verification(renderer: CLIRenderer, available: bool, error: str | None) -> None:
    if available:
        renderer.ok("JMeter binary is available")
    else:
        renderer.fail(error or "JMeter binary is not available")


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    cli_overrides: dict[str, object] = dict(overrides or {})
    if _flag(args, "verbose"):
        cli_overrides["logging.level"] = "DEBUG"
        cli_overrides["logging.log_to_stderr"] = True
        cli_overrides["logging.format"] = "console"
    try:
        return load_config(config_path, cli_overrides=cli_overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


def _open_service(
    args: argparse.Namespace, *, overrides: Mapping[str, object] | None = None
) -> RunnerService:
    config = _load_effective_config(args, overrides)
    try:
        settings = RunnerSettings.from_config(config)
    except ConfigValidationError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc
    setup_logging(settings.logging)
    return RunnerService(settings)


def _human_size(size_bytes: int) -> str:
    value = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size_bytes} B"


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"missing required argument: {name}", exit_code=ExitCode.CONFIG_ERROR)
    return value


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _string_sequence(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(item for item in value if isinstance(item, str))
    return ()


__all__ = [
    "CLIError",
    "build_parser",
    "exit_code_for",
    "main",
    "run_cli",
]
