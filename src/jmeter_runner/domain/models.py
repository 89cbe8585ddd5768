"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import Path
from typing import Final, NoReturn, TypeVar, cast

from jmeter_runner.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT: Final[int] = 8192


class ExecutionState(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: Final[frozenset[ExecutionState]] = frozenset(
    {ExecutionState.COMPLETED, ExecutionState.FAILED}
)
ACTIVE_STATES: Final[frozenset[ExecutionState]] = frozenset(
    {ExecutionState.QUEUED, ExecutionState.RUNNING}
)

# QUEUED -> FAILED covers failures detected before a process is live.
ALLOWED_TRANSITIONS: Final[Mapping[ExecutionState, frozenset[ExecutionState]]] = {
    ExecutionState.QUEUED: frozenset({ExecutionState.RUNNING, ExecutionState.FAILED}),
    ExecutionState.RUNNING: frozenset({ExecutionState.COMPLETED, ExecutionState.FAILED}),
    ExecutionState.COMPLETED: frozenset(),
    ExecutionState.FAILED: frozenset(),
}


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


@dataclass(frozen=True, slots=True)
class ExecutionRecord(CanonicalModel):
    """Immutable point-in-time snapshot of one execution."""

    id: str
    source_file_id: str
    state: ExecutionState
    queued_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    error_message: str | None = None
    report_path: str | None = None
    cancelled: bool = False

    def __post_init__(self) -> None:
        _validate_execution_id(self.id, "ExecutionRecord.id")
        _as_str(self.source_file_id, "ExecutionRecord.source_file_id")
        if not isinstance(self.state, ExecutionState):
            _fail("ExecutionRecord.state", "must be ExecutionState")
        _as_datetime(self.queued_at, "ExecutionRecord.queued_at")

        if self.started_at is not None:
            _as_datetime(self.started_at, "ExecutionRecord.started_at")
            if self.started_at < self.queued_at:
                _fail("ExecutionRecord.started_at", "must be >= ExecutionRecord.queued_at")
        if self.finished_at is not None:
            _as_datetime(self.finished_at, "ExecutionRecord.finished_at")
            lower = self.started_at or self.queued_at
            if self.finished_at < lower:
                _fail("ExecutionRecord.finished_at", "must not precede earlier timestamps")

        if self.state is ExecutionState.QUEUED and (
            self.started_at is not None or self.finished_at is not None
        ):
            _fail("ExecutionRecord.state", "queued records carry no start/finish timestamps")
        if self.state is ExecutionState.RUNNING and self.started_at is None:
            _fail("ExecutionRecord.started_at", "required once running")
        if self.state.is_terminal and self.finished_at is None:
            _fail("ExecutionRecord.finished_at", "required in a terminal state")
        if self.exit_code is not None and not self.state.is_terminal:
            _fail("ExecutionRecord.exit_code", "only present after running ends")
        if self.error_message is not None and self.state is not ExecutionState.FAILED:
            _fail("ExecutionRecord.error_message", "only present in failed state")
        if self.report_path is not None and self.state is not ExecutionState.COMPLETED:
            _fail("ExecutionRecord.report_path", "only present in completed state")
        if self.cancelled and self.state is not ExecutionState.FAILED:
            _fail("ExecutionRecord.cancelled", "only failed records can be cancelled")

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def duration_seconds(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds())

    def to_dict(self) -> dict[str, JSONValue]:
        payload = CanonicalModel.to_dict(self)
        payload["duration_seconds"] = self.duration_seconds
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ExecutionRecord:
        parsed = _expect_object(
            data,
            "ExecutionRecord",
            required={"id", "source_file_id", "state", "queued_at"},
            optional={
                "started_at",
                "finished_at",
                "exit_code",
                "error_message",
                "report_path",
                "cancelled",
                "duration_seconds",
            },
        )
        exit_code = parsed.get("exit_code")
        if exit_code is not None and (
            isinstance(exit_code, bool) or not isinstance(exit_code, int)
        ):
            _fail("ExecutionRecord.exit_code", f"expected integer, got {type(exit_code).__name__}")
        cancelled = parsed.get("cancelled", False)
        if not isinstance(cancelled, bool):
            _fail("ExecutionRecord.cancelled", f"expected boolean, got {type(cancelled).__name__}")

        return cls(
            id=_as_str(parsed["id"], "ExecutionRecord.id"),
            source_file_id=_as_str(parsed["source_file_id"], "ExecutionRecord.source_file_id"),
            state=_as_enum(ExecutionState, parsed["state"], "ExecutionRecord.state"),
            queued_at=_as_datetime(parsed["queued_at"], "ExecutionRecord.queued_at"),
            started_at=_as_optional_datetime(
                parsed.get("started_at"), "ExecutionRecord.started_at"
            ),
            finished_at=_as_optional_datetime(
                parsed.get("finished_at"), "ExecutionRecord.finished_at"
            ),
            exit_code=cast("int | None", exit_code),
            error_message=_as_optional_str(
                parsed.get("error_message"), "ExecutionRecord.error_message"
            ),
            report_path=_as_optional_str(parsed.get("report_path"), "ExecutionRecord.report_path"),
            cancelled=cancelled,
        )


@dataclass(frozen=True, slots=True)
class InstallationState:
    """Durable installation configuration owned by the installation manager."""

    installation_path: str | None = None
    version: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.installation_path and self.installation_path.strip())

    def to_record(self) -> dict[str, JSONValue]:
        return {"installationPath": self.installation_path, "version": self.version}

    @classmethod
    def from_record(cls, record: Mapping[str, object]) -> InstallationState:
        path = record.get("installationPath")
        version = record.get("version")
        return cls(
            installation_path=_as_optional_str(path, "InstallationState.installationPath"),
            version=_as_optional_str(version, "InstallationState.version"),
        )


@dataclass(frozen=True, slots=True)
class InstallationStatus(CanonicalModel):
    configured: bool
    path: str | None = None
    version: str | None = None


@dataclass(frozen=True, slots=True)
class VerificationResult(CanonicalModel):
    """Outcome of probing the configured installation."""

    available: bool
    path: str | None = None
    version: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class InstallResult(CanonicalModel):
    installation_path: str
    version: str | None = None


@dataclass(frozen=True, slots=True)
class ReportInfo(CanonicalModel):
    execution_id: str
    path: str
    size_bytes: int
    created_at: datetime


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must be at least 1 character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return _as_datetime(value, path)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _validate_execution_id(value: object, path: str) -> str:
    try:
        domain_ids.validate_execution_id(cast("str", value))
    except ValueError as exc:
        _fail(path, str(exc))
    return cast("str", value)


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return cast("JSONValue", value)
    if isinstance(value, float):
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "ACTIVE_STATES",
    "ALLOWED_TRANSITIONS",
    "CanonicalModel",
    "ExecutionRecord",
    "ExecutionState",
    "InstallResult",
    "InstallationState",
    "InstallationStatus",
    "JSONScalar",
    "JSONValue",
    "ReportInfo",
    "TERMINAL_STATES",
    "VerificationResult",
]
