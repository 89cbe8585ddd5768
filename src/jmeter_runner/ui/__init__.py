"""UI package exports for the CLI and its rendering layer."""

from jmeter_runner.ui.cli import CLIError, build_parser, exit_code_for, main, run_cli
from jmeter_runner.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "exit_code_for",
    "main",
    "run_cli",
]
