"""
jmeter-runner — execution registry

File: src/jmeter_runner/execution/registry.py

Purpose
- Insertion-ordered, in-memory table of execution records with an enforced
  QUEUED -> RUNNING -> COMPLETED|FAILED state machine.

Functional requirements
- Reads return immutable snapshots and never block on supervision.
- Illegal edges raise ``InvalidStateTransition``; terminal states are final.
- Optional write-through to a durable execution repository, with restart
  recovery that resolves unfinished records to FAILED.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Final, Protocol

import structlog

from jmeter_runner.domain import ids
from jmeter_runner.domain.errors import InvalidStateTransition, NotFound
from jmeter_runner.domain.models import (
    ALLOWED_TRANSITIONS,
    ExecutionRecord,
    ExecutionState,
)

INTERRUPTED_MESSAGE: Final[str] = "interrupted by restart"

NowProvider = Callable[[], datetime]


class ExecutionStore(Protocol):
    def save(self, record: ExecutionRecord) -> ExecutionRecord: ...

    def list_all(self) -> list[ExecutionRecord]: ...

    def delete_terminal(self) -> int: ...


class ExecutionRegistry:
    """Owner of execution record snapshots."""

    def __init__(
        self,
        *,
        repository: ExecutionStore | None = None,
        now_provider: NowProvider | None = None,
        id_factory: Callable[[], str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._repository = repository
        self._now = now_provider if now_provider is not None else _utc_now
        self._id_factory = id_factory if id_factory is not None else ids.generate_execution_id
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._table_lock = threading.Lock()
        self._records: dict[str, ExecutionRecord] = {}
        self._record_locks: dict[str, threading.Lock] = {}

    def create(self, source_file_id: str) -> ExecutionRecord:
        """Insert a new QUEUED record and return its snapshot."""
        with self._table_lock:
            execution_id = self._id_factory()
            while execution_id in self._records:
                execution_id = self._id_factory()
            record = ExecutionRecord(
                id=execution_id,
                source_file_id=source_file_id,
                state=ExecutionState.QUEUED,
                queued_at=self._now(),
            )
            self._records[execution_id] = record
            self._record_locks[execution_id] = threading.Lock()
        self._persist(record)
        return record

    def get(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise NotFound(f"execution not found: {execution_id}")
        return record

    def find(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    def list_all(self) -> list[ExecutionRecord]:
        with self._table_lock:
            return list(self._records.values())

    def has_active(self) -> bool:
        return any(record.is_active for record in self.list_all())

    def counts(self) -> dict[ExecutionState, int]:
        totals = dict.fromkeys(ExecutionState, 0)
        for record in self.list_all():
            totals[record.state] += 1
        return totals

    def mark_running(self, execution_id: str) -> ExecutionRecord:
        return self._transition(execution_id, ExecutionState.RUNNING)

    def mark_completed(
        self,
        execution_id: str,
        *,
        exit_code: int = 0,
        report_path: str | None = None,
    ) -> ExecutionRecord:
        return self._transition(
            execution_id,
            ExecutionState.COMPLETED,
            exit_code=exit_code,
            report_path=report_path,
        )

    def mark_failed(
        self,
        execution_id: str,
        *,
        error_message: str,
        exit_code: int | None = None,
        cancelled: bool = False,
    ) -> ExecutionRecord:
        return self._transition(
            execution_id,
            ExecutionState.FAILED,
            error_message=error_message,
            exit_code=exit_code,
            cancelled=cancelled,
        )

    def clear_history(self) -> int:
        """Drop terminal records; QUEUED and RUNNING records are kept."""
        with self._table_lock:
            terminal_ids = [key for key, record in self._records.items() if record.is_terminal]
            for execution_id in terminal_ids:
                del self._records[execution_id]
                del self._record_locks[execution_id]
        if self._repository is not None:
            self._repository.delete_terminal()
        self._logger.info("execution_history_cleared", removed=len(terminal_ids))
        return len(terminal_ids)

    def restore(self) -> int:
        """Load persisted records; unfinished ones resolve to FAILED. Returns the count loaded."""
        if self._repository is None:
            return 0
        loaded = self._repository.list_all()
        interrupted = 0
        with self._table_lock:
            for record in loaded:
                if record.id in self._records:
                    continue
                if record.is_active:
                    record = self._resolved(
                        record,
                        ExecutionState.FAILED,
                        {"error_message": INTERRUPTED_MESSAGE},
                    )
                    self._repository.save(record)
                    interrupted += 1
                self._records[record.id] = record
                self._record_locks[record.id] = threading.Lock()
        self._logger.info("execution_history_restored", loaded=len(loaded), interrupted=interrupted)
        return len(loaded)

    def _transition(
        self,
        execution_id: str,
        target: ExecutionState,
        **changes: Any,
    ) -> ExecutionRecord:
        lock = self._record_locks.get(execution_id)
        if lock is None:
            raise NotFound(f"execution not found: {execution_id}")
        with lock:
            current = self.get(execution_id)
            if target not in ALLOWED_TRANSITIONS[current.state]:
                raise InvalidStateTransition(
                    f"illegal transition {current.state.value} -> {target.value} "
                    f"for execution {execution_id}"
                )
            updated = self._resolved(current, target, changes)
            self._records[execution_id] = updated
            self._persist(updated)
        self._logger.debug(
            "execution_state_changed",
            execution_id=execution_id,
            previous=current.state.value,
            state=target.value,
        )
        return updated

    def _resolved(
        self,
        current: ExecutionRecord,
        target: ExecutionState,
        changes: dict[str, Any],
    ) -> ExecutionRecord:
        now = self._now()
        lower = current.started_at or current.queued_at
        if now < lower:
            now = lower
        if target is ExecutionState.RUNNING:
            return dataclasses.replace(current, state=target, started_at=now, **changes)
        return dataclasses.replace(current, state=target, finished_at=now, **changes)

    def _persist(self, record: ExecutionRecord) -> None:
        if self._repository is not None:
            self._repository.save(record)


def _utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "ExecutionRegistry",
    "ExecutionStore",
    "INTERRUPTED_MESSAGE",
    "NowProvider",
]
