"""Unit tests for execution and test plan id helpers."""

from __future__ import annotations

import threading

import pytest

from jmeter_runner.domain import ids

# 2026-01-10T11:02:50 UTC
_BASE_NS = 1_768_042_970 * 1_000_000_000


def test_execution_id_is_timestamp_based_and_filesystem_safe() -> None:
    value = ids.generate_execution_id(time_ns=lambda: _BASE_NS + 123_456_789)

    assert value == "2026-01-10T11-02-50-123456789"
    assert ":" not in value
    assert "/" not in value
    ids.validate_execution_id(value)
    assert ids.is_execution_id(value)


def test_same_nanosecond_ids_get_counter_suffix() -> None:
    fixed = _BASE_NS + 7

    first = ids.generate_execution_id(time_ns=lambda: fixed)
    second = ids.generate_execution_id(time_ns=lambda: fixed)
    third = ids.generate_execution_id(time_ns=lambda: fixed)

    assert first == "2026-01-10T11-02-50-000000007"
    assert second == f"{first}-1"
    assert third == f"{first}-2"
    for value in (first, second, third):
        ids.validate_execution_id(value)


def test_concurrent_generation_never_collides() -> None:
    results: list[str] = []
    lock = threading.Lock()

    def worker() -> None:
        local = [ids.generate_execution_id() for _ in range(500)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 4000
    assert len(set(results)) == 4000


@pytest.mark.parametrize(
    "value",
    [
        "",
        "2026-01-10T11:02:50-123456789",
        "2026-01-10T11-02-50-12345678",
        "2026-01-10T11-02-50-123456789-0",
        "../2026-01-10T11-02-50-123456789",
        "not-an-id",
    ],
)
def test_validate_execution_id_rejects_malformed(value: str) -> None:
    assert not ids.is_execution_id(value)
    with pytest.raises(ValueError, match="invalid execution id"):
        ids.validate_execution_id(value)


def test_validate_execution_id_rejects_non_string() -> None:
    with pytest.raises(ValueError, match="must be a string"):
        ids.validate_execution_id(42)  # type: ignore[arg-type]


def test_negative_clock_is_rejected() -> None:
    with pytest.raises(ValueError, match="non-negative"):
        ids.generate_execution_id(time_ns=lambda: -1)


def test_file_id_generation_and_validation() -> None:
    value = ids.generate_file_id(token_hex=lambda size: "ab" * size)

    assert value == "ab" * 16
    assert len(value) == ids.FILE_ID_LENGTH
    assert ids.is_file_id(value)
    assert ids.is_file_id(ids.generate_file_id())


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("", "must not be empty"),
        ("   ", "must not be empty"),
        ("AB" * 16, "invalid source file id"),
        ("a" * 31, "invalid source file id"),
        ("../" + "a" * 29, "invalid source file id"),
    ],
)
def test_validate_file_id_rejects_malformed(value: str, message: str) -> None:
    assert not ids.is_file_id(value)
    with pytest.raises(ValueError, match=message):
        ids.validate_file_id(value)
