"""Module entrypoint for ``python -m jmeter_runner``."""

from __future__ import annotations

from jmeter_runner.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
