"""Shared fixtures: fake JMeter distributions, test plans, and runner settings."""

from __future__ import annotations

import stat
import zipfile
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path

import pytest

from jmeter_runner.config.loader import RunnerSettings, load_settings
from jmeter_runner.observability.logging import shutdown_logging

# Stand-in for bin/jmeter: "-v" prints a banner, otherwise honours -t/-o and the
# "delay=" and "exit=" lines of the plan file.
FAKE_JMETER_SCRIPT = """#!/bin/sh
if [ "$1" = "-v" ]; then
  echo "Copyright (c) 1999-2024 The Apache Software Foundation"
  echo "Version __VERSION__"
  exit __VERSION_EXIT__
fi
plan=""
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -t) plan="$2"; shift 2 ;;
    -o) out="$2"; shift 2 ;;
    *) shift ;;
  esac
done
echo "Creating summariser <summary>"
echo "warning from stderr" 1>&2
delay=$(sed -n 's/^delay=//p' "$plan")
code=$(sed -n 's/^exit=//p' "$plan")
report=$(sed -n 's/^report=//p' "$plan")
if [ -n "$delay" ]; then
  sleep "$delay"
fi
if [ -n "$out" ] && [ "${report:-yes}" = "yes" ] && [ "${code:-0}" = "0" ]; then
  mkdir -p "$out/content"
  echo "<html>dashboard</html>" > "$out/index.html"
  echo "body {}" > "$out/content/style.css"
fi
echo "... end of run"
exit "${code:-0}"
"""


def fake_jmeter_script(*, version: str = "5.6.3", version_exit: int = 0) -> str:
    return FAKE_JMETER_SCRIPT.replace("__VERSION__", version).replace(
        "__VERSION_EXIT__", str(version_exit)
    )


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


@pytest.fixture
def write_fake_jmeter() -> Callable[..., Path]:
    """Create ``<home>/bin/jmeter`` (executable) and return its path."""

    def _write(
        home: Path,
        *,
        version: str = "5.6.3",
        version_exit: int = 0,
        executable: bool = True,
    ) -> Path:
        binary = home / "bin" / "jmeter"
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text(fake_jmeter_script(version=version, version_exit=version_exit))
        mode = 0o755 if executable else 0o644
        binary.chmod(mode)
        return binary

    return _write


@pytest.fixture
def make_distribution_zip() -> Callable[..., Path]:
    """Build a distribution archive with an optional top-level wrapper directory."""

    def _make(
        destination: Path,
        *,
        root: str | None = "apache-jmeter-5.6.3",
        binary_name: str | None = "jmeter",
        version: str = "5.6.3",
        extra: Mapping[str, str] | None = None,
    ) -> Path:
        prefix = f"{root}/" if root else ""
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(f"{prefix}lib/ApacheJMeter_core.jar", b"jar")
            archive.writestr(f"{prefix}LICENSE", "Apache License")
            if binary_name is not None:
                info = zipfile.ZipInfo(f"{prefix}bin/{binary_name}")
                info.external_attr = (stat.S_IFREG | 0o644) << 16
                archive.writestr(info, fake_jmeter_script(version=version))
            for name, content in (extra or {}).items():
                archive.writestr(name, content)
        return destination

    return _make


@pytest.fixture
def write_plan() -> Callable[..., Path]:
    """Write a ``.jmx`` plan understood by the fake JMeter script."""

    def _write(
        directory: Path,
        name: str = "plan.jmx",
        *,
        delay: float = 0.0,
        exit_code: int = 0,
        report: bool = True,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        plan = directory / name
        lines = [
            "<jmeterTestPlan/>",
            f"delay={delay}" if delay else "",
            f"exit={exit_code}",
            f"report={'yes' if report else 'no'}",
        ]
        plan.write_text("\n".join(line for line in lines if line) + "\n")
        return plan

    return _write


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., RunnerSettings]:
    """Load settings rooted at ``tmp_path`` with dotted CLI-style overrides."""

    def _make(**overrides: object) -> RunnerSettings:
        config_path = tmp_path / "jmeter-runner.toml"
        if not config_path.exists():
            config_path.write_text('[paths]\nstorage_root = "storage"\n', encoding="utf-8")
        cli_overrides = {key.replace("__", "."): value for key, value in overrides.items()}
        return load_settings(config_path, cli_overrides=cli_overrides, environ={})

    return _make
