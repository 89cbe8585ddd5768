"""Output rendering for the jmeter-runner CLI.

File: src/jmeter_runner/ui/render.py

Purpose
- Provide a thin rendering layer over a ``rich`` console for CLI output.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Functional requirements
- Output stays readable when piped: no color or markup codes off a TTY.
- All public methods must be safe to call in any environment.
"""

from __future__ import annotations

import os
import sys
from typing import IO, TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

_STATE_STYLES = {
    "queued": "cyan",
    "running": "yellow",
    "completed": "green",
    "failed": "red",
}


def _color_allowed(no_color_flag: bool, stream: IO[str]) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Rich-backed CLI output renderer."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: IO[str] | None = None,
    ) -> None:
        self.verbose = verbose
        target = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, target)
        self._console = Console(
            file=target,
            no_color=not self._color,
            highlight=False,
            soft_wrap=True,
            emoji=False,
            force_terminal=self._color,
        )

    @property
    def color(self) -> bool:
        return self._color

    def heading(self, text: str) -> None:
        self._console.print(f"[bold]{escape(text)}[/bold]")

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._console.print(f"{escape(key)}: {escape(str(value))}")

    def text(self, line: str) -> None:
        self._console.print(escape(line))

    def blank(self) -> None:
        self._console.print()

    def section(self, title: str) -> None:
        self._console.print()
        self._console.print(f"[bold]{escape(title)}[/bold]")

    def warning(self, text: str) -> None:
        self._console.print(f"  [yellow]Warning:[/yellow] {escape(text)}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._console.print(f"  {escape(prefix)}{escape(entry)}")

    def state(self, value: str) -> str:
        """Markup for an execution state label."""

        style = _STATE_STYLES.get(value)
        if style is None:
            return escape(value)
        return f"[{style}]{escape(value)}[/{style}]"

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
        markup_columns: Sequence[int] = (),
    ) -> None:
        """Print a table; cells are escaped except in ``markup_columns``."""

        if not rows:
            return
        if title:
            self.section(title)
        table = Table(show_edge=False, box=None, pad_edge=False, header_style="bold")
        for header in headers:
            table.add_column(header)
        for row in rows:
            cells = [
                str(cell) if index in markup_columns else escape(str(cell))
                for index, cell in enumerate(row)
            ]
            table.add_row(*cells)
        self._console.print(table)

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            self._console.print(f"  $ {escape(step)}")

    def ok(self, label: str) -> None:
        self._console.print(f"  [green]OK[/green]  {escape(label)}")

    def fail(self, label: str) -> None:
        self._console.print(f"  [red]FAIL[/red]  {escape(label)}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
