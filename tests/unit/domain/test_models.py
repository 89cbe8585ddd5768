"""Unit tests for execution and installation domain models."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta

import pytest

from jmeter_runner.domain.models import (
    ALLOWED_TRANSITIONS,
    ExecutionRecord,
    ExecutionState,
    InstallationState,
    InstallResult,
    VerificationResult,
)

EXECUTION_ID = "2026-02-01T12-00-00-000000001"
FILE_ID = "0123456789abcdef0123456789abcdef"


def _utc_dt(seconds: int = 0) -> datetime:
    return datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC) + timedelta(seconds=seconds)


def _queued() -> ExecutionRecord:
    return ExecutionRecord(
        id=EXECUTION_ID,
        source_file_id=FILE_ID,
        state=ExecutionState.QUEUED,
        queued_at=_utc_dt(),
    )


def test_terminal_states_have_no_outgoing_edges() -> None:
    assert ALLOWED_TRANSITIONS[ExecutionState.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[ExecutionState.FAILED] == frozenset()
    assert ExecutionState.FAILED in ALLOWED_TRANSITIONS[ExecutionState.QUEUED]
    assert ExecutionState.COMPLETED not in ALLOWED_TRANSITIONS[ExecutionState.QUEUED]
    assert ExecutionState.COMPLETED.is_terminal
    assert not ExecutionState.RUNNING.is_terminal


def test_completed_record_roundtrip_and_duration() -> None:
    record = ExecutionRecord(
        id=EXECUTION_ID,
        source_file_id=FILE_ID,
        state=ExecutionState.COMPLETED,
        queued_at=_utc_dt(),
        started_at=_utc_dt(2),
        finished_at=_utc_dt(95),
        exit_code=0,
        report_path="/reports/x/dashboard",
    )

    payload = record.to_dict()
    assert payload["state"] == "completed"
    assert payload["queued_at"] == "2026-02-01T12:00:00.000000Z"
    assert payload["duration_seconds"] == 93
    assert payload["cancelled"] is False
    assert ExecutionRecord.from_json(record.to_json()) == record
    assert record.is_terminal
    assert not record.is_active


def test_duration_is_none_until_finished() -> None:
    running = dataclasses.replace(_queued(), state=ExecutionState.RUNNING, started_at=_utc_dt(1))

    assert running.duration_seconds is None
    assert running.is_active
    assert running.to_dict()["duration_seconds"] is None


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"started_at": _utc_dt(-1), "state": ExecutionState.RUNNING}, "started_at"),
        ({"started_at": _utc_dt(1)}, "queued records carry no"),
        ({"state": ExecutionState.RUNNING}, "required once running"),
        ({"state": ExecutionState.FAILED}, "required in a terminal state"),
        ({"exit_code": 1}, "only present after running ends"),
        ({"error_message": "boom"}, "only present in failed state"),
        ({"report_path": "/tmp/r"}, "only present in completed state"),
        ({"cancelled": True}, "only failed records can be cancelled"),
        ({"id": "bad id"}, "invalid execution id"),
        ({"source_file_id": "  "}, "at least 1 character"),
    ],
)
def test_invariants_are_enforced(changes: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        dataclasses.replace(_queued(), **changes)


def test_finish_must_not_precede_start() -> None:
    with pytest.raises(ValueError, match="must not precede"):
        ExecutionRecord(
            id=EXECUTION_ID,
            source_file_id=FILE_ID,
            state=ExecutionState.FAILED,
            queued_at=_utc_dt(),
            started_at=_utc_dt(10),
            finished_at=_utc_dt(5),
            error_message="boom",
        )


def test_naive_datetimes_are_rejected() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        ExecutionRecord(
            id=EXECUTION_ID,
            source_file_id=FILE_ID,
            state=ExecutionState.QUEUED,
            queued_at=datetime(2026, 2, 1, 12, 0, 0),
        )


def test_from_dict_rejects_unknown_fields_and_bad_types() -> None:
    payload = _queued().to_dict()

    with pytest.raises(ValueError, match="unexpected fields"):
        ExecutionRecord.from_dict({**payload, "priority": 1})
    with pytest.raises(ValueError, match="expected integer"):
        ExecutionRecord.from_dict({**payload, "exit_code": True})
    with pytest.raises(ValueError, match="invalid value 'paused'"):
        ExecutionRecord.from_dict({**payload, "state": "paused"})
    with pytest.raises(ValueError, match="JSON root must be an object"):
        ExecutionRecord.from_json("[]")


def test_installation_state_record_uses_original_field_names() -> None:
    state = InstallationState(installation_path="/opt/jmeter", version="5.6.3")

    record = state.to_record()

    assert record == {"installationPath": "/opt/jmeter", "version": "5.6.3"}
    assert InstallationState.from_record(record) == state
    assert state.is_configured
    assert not InstallationState().is_configured
    assert not InstallationState(installation_path="   ").is_configured


def test_installation_state_from_record_rejects_bad_types() -> None:
    with pytest.raises(ValueError, match="installationPath"):
        InstallationState.from_record({"installationPath": 5, "version": None})


def test_result_models_serialize_canonically() -> None:
    result = VerificationResult(available=False, error="JMeter is not configured")
    installed = InstallResult(installation_path="/srv/jmeter", version=None)

    assert result.to_json() == (
        '{"available":false,"error":"JMeter is not configured","path":null,"version":null}'
    )
    assert installed.to_dict() == {"installation_path": "/srv/jmeter", "version": None}
