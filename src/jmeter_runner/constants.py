"""Stable constants shared across runner components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Durable record keys.
INSTALLATION_STATE_KEY: Final[str] = "installation-state"

# Distribution layout.
BIN_DIR_NAME: Final[str] = "bin"
UNIX_EXECUTABLE_NAME: Final[str] = "jmeter"
WINDOWS_EXECUTABLE_NAME: Final[str] = "jmeter.bat"
EXECUTABLE_NAMES: Final[tuple[str, ...]] = (UNIX_EXECUTABLE_NAME, WINDOWS_EXECUTABLE_NAME)
CANONICAL_INSTALL_DIR_NAME: Final[str] = "jmeter"
STAGING_DIR_PREFIX: Final[str] = ".staging-"
RETIRED_DIR_PREFIX: Final[str] = ".retired-"
VERSION_QUERY_ARG: Final[str] = "-v"

# Per-execution output layout inside ``<reports_dir>/<execution_id>``.
RESULTS_FILE_NAME: Final[str] = "results.jtl"
ENGINE_LOG_FILE_NAME: Final[str] = "jmeter.log"
CONSOLE_LOG_FILE_NAME: Final[str] = "console.log"
DASHBOARD_DIR_NAME: Final[str] = "dashboard"
REPORT_INDEX_FILE: Final[str] = "index.html"

# Uploaded test plans.
TEST_PLAN_SUFFIX: Final[str] = ".jmx"

# Default runtime paths (relative to the config file directory unless overridden).
STORAGE_DIR: Final[PurePosixPath] = PurePosixPath("storage")
UPLOADS_DIR: Final[PurePosixPath] = STORAGE_DIR / "uploads"
REPORTS_DIR: Final[PurePosixPath] = STORAGE_DIR / "reports"
INSTALL_DIR: Final[PurePosixPath] = STORAGE_DIR / "installations"
STATE_DB_PATH: Final[PurePosixPath] = STORAGE_DIR / "state" / "runner.sqlite"
LOG_DIR: Final[PurePosixPath] = STORAGE_DIR / "logs"

CANCELLED_MESSAGE: Final[str] = "cancelled"

__all__ = [
    "BIN_DIR_NAME",
    "CANCELLED_MESSAGE",
    "CANONICAL_INSTALL_DIR_NAME",
    "CONFIG_SCHEMA_VERSION",
    "CONSOLE_LOG_FILE_NAME",
    "DASHBOARD_DIR_NAME",
    "ENGINE_LOG_FILE_NAME",
    "EXECUTABLE_NAMES",
    "INSTALLATION_STATE_KEY",
    "INSTALL_DIR",
    "LOG_DIR",
    "REPORTS_DIR",
    "REPORT_INDEX_FILE",
    "RESULTS_FILE_NAME",
    "RETIRED_DIR_PREFIX",
    "STAGING_DIR_PREFIX",
    "STATE_DB_PATH",
    "STATE_DB_SCHEMA_VERSION",
    "STORAGE_DIR",
    "TEST_PLAN_SUFFIX",
    "UNIX_EXECUTABLE_NAME",
    "UPLOADS_DIR",
    "VERSION_QUERY_ARG",
    "WINDOWS_EXECUTABLE_NAME",
]
