"""
jmeter-runner — repositories

File: src/jmeter_runner/persistence/repositories.py

Purpose
- Repository interfaces for durable key-value records and the optional
  execution history on top of the state DB.

Functional requirements
- Key-value records are stored as canonical JSON objects under string keys.
- Execution records keep their submission order across upserts.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Final

from jmeter_runner.domain import ids
from jmeter_runner.domain.models import ExecutionRecord, ExecutionState, JSONValue
from jmeter_runner.persistence.state_db import RowValue, StateDB, canonical_json

_MAX_KEY_LENGTH: Final[int] = 256
_TERMINAL_STATE_VALUES: Final[tuple[str, ...]] = (
    ExecutionState.COMPLETED.value,
    ExecutionState.FAILED.value,
)


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()


class RecordStore(_BaseRepo):
    """Durable key-value storage; each value is a JSON object."""

    def save(self, key: str, payload: Mapping[str, JSONValue]) -> None:
        key = _as_key(key)
        document = _as_mapping(payload, f"records[{key}]")
        self._db.execute(
            """
            INSERT INTO records (key, payload, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                payload=excluded.payload,
                updated_at=excluded.updated_at
            """,
            (key, canonical_json(document), _iso8601z(_utc_now())),
        )

    def load(self, key: str) -> dict[str, object] | None:
        key = _as_key(key)
        row = self._db.query_one("SELECT payload FROM records WHERE key = ?", (key,))
        if row is None:
            return None
        return _load_json_object(_row_text(row, "payload", "records.payload"), f"records[{key}]")

    def delete(self, key: str) -> bool:
        key = _as_key(key)
        return self._db.execute("DELETE FROM records WHERE key = ?", (key,)) > 0


class ExecutionRepository(_BaseRepo):
    """Repository for execution record snapshots in submission order."""

    def save(self, record: ExecutionRecord) -> ExecutionRecord:
        # seq is assigned once on first insert and never rewritten.
        self._db.execute(
            """
            INSERT INTO executions (id, seq, state, payload, updated_at)
            VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM executions), ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                state=excluded.state,
                payload=excluded.payload,
                updated_at=excluded.updated_at
            """,
            (
                record.id,
                record.state.value,
                record.to_json(),
                _iso8601z(_utc_now()),
            ),
        )
        return record

    def get(self, execution_id: str) -> ExecutionRecord | None:
        ids.validate_execution_id(execution_id)
        row = self._db.query_one(
            "SELECT payload FROM executions WHERE id = ?",
            (execution_id,),
        )
        if row is None:
            return None
        return ExecutionRecord.from_json(_row_text(row, "payload", "executions.payload"))

    def list_all(self) -> list[ExecutionRecord]:
        rows = self._db.query_all("SELECT payload FROM executions ORDER BY seq ASC")
        return [
            ExecutionRecord.from_json(_row_text(row, "payload", "executions.payload"))
            for row in rows
        ]

    def delete(self, execution_id: str) -> bool:
        ids.validate_execution_id(execution_id)
        return self._db.execute("DELETE FROM executions WHERE id = ?", (execution_id,)) > 0

    def delete_terminal(self) -> int:
        return self._db.execute(
            "DELETE FROM executions WHERE state IN (?, ?)",
            _TERMINAL_STATE_VALUES,
        )


def _as_key(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("record key: expected string")
    parsed = value.strip()
    if not parsed:
        raise ValueError("record key: must not be empty")
    if len(parsed) > _MAX_KEY_LENGTH:
        raise ValueError(f"record key: must be <= {_MAX_KEY_LENGTH} characters")
    return parsed


def _row_text(row: Mapping[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _as_mapping(value: object, path: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{path}: expected object")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ValueError(f"{path}: object keys must be strings")
        parsed[key] = item
    return parsed


def _load_json_object(payload: str, path: str) -> dict[str, object]:
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: JSON root must be object")
    return _as_mapping(loaded, path)


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "ExecutionRepository",
    "RecordStore",
]
