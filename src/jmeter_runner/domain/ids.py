"""Canonical ID generation and validation for executions and uploaded test plans."""

from __future__ import annotations

import re
import secrets
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final

EXECUTION_ID_PATTERN_DESCRIPTION: Final[str] = "2026-01-10T11-02-50-123456789[-N]"
FILE_ID_LENGTH: Final[int] = 32

_EXECUTION_ID_RE: Final[re.Pattern[str]] = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{9}(?:-[1-9]\d*)?$"
)
_FILE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]{32}$")

_TimeNs = Callable[[], int]

_ID_LOCK = threading.Lock()
_last_timestamp_ns = 0
_collision_counter = 0

__all__ = [
    "EXECUTION_ID_PATTERN_DESCRIPTION",
    "FILE_ID_LENGTH",
    "generate_execution_id",
    "generate_file_id",
    "is_execution_id",
    "is_file_id",
    "validate_execution_id",
    "validate_file_id",
]


def generate_execution_id(*, time_ns: _TimeNs | None = None) -> str:
    """Generate a filesystem-safe, timestamp-based execution id.

    The id reads ``YYYY-MM-DDTHH-MM-SS-<nanos>`` in UTC. Ids minted within the
    same nanosecond get a ``-<n>`` suffix so concurrent callers never collide.
    """
    global _last_timestamp_ns, _collision_counter

    clock = time.time_ns if time_ns is None else time_ns
    timestamp_ns = clock()
    if not isinstance(timestamp_ns, int) or timestamp_ns < 0:
        raise ValueError("time_ns must return a non-negative integer")

    with _ID_LOCK:
        if timestamp_ns != _last_timestamp_ns:
            _last_timestamp_ns = timestamp_ns
            _collision_counter = 0
        count = _collision_counter
        _collision_counter += 1

    seconds, nanos = divmod(timestamp_ns, 1_000_000_000)
    moment = datetime.fromtimestamp(seconds, tz=UTC)
    base = f"{moment.strftime('%Y-%m-%dT%H-%M-%S')}-{nanos:09d}"
    if count == 0:
        return base
    return f"{base}-{count}"


def validate_execution_id(id_str: str) -> None:
    """Validate execution id format and raise ``ValueError`` on failure."""
    if not isinstance(id_str, str):
        raise ValueError(f"execution id must be a string, got {type(id_str).__name__}")
    if not _EXECUTION_ID_RE.fullmatch(id_str):
        raise ValueError(
            f"invalid execution id {id_str!r}; expected {EXECUTION_ID_PATTERN_DESCRIPTION}"
        )


def is_execution_id(id_str: object) -> bool:
    return isinstance(id_str, str) and _EXECUTION_ID_RE.fullmatch(id_str) is not None


def is_file_id(id_str: object) -> bool:
    return isinstance(id_str, str) and _FILE_ID_RE.fullmatch(id_str) is not None


def generate_file_id(*, token_hex: Callable[[int], str] | None = None) -> str:
    """Generate a 32-character lowercase hex id for an uploaded test plan."""
    provider = secrets.token_hex if token_hex is None else token_hex
    value = provider(FILE_ID_LENGTH // 2)
    validate_file_id(value)
    return value


def validate_file_id(id_str: str) -> None:
    """Validate test plan id format and raise ``ValueError`` on failure."""
    if not isinstance(id_str, str):
        raise ValueError(f"source file id must be a string, got {type(id_str).__name__}")
    if not id_str.strip():
        raise ValueError("source file id must not be empty")
    if not _FILE_ID_RE.fullmatch(id_str):
        raise ValueError(
            f"invalid source file id {id_str!r}; expected {FILE_ID_LENGTH} lowercase hex characters"
        )
