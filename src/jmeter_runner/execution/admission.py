"""
jmeter-runner — admission controller

File: src/jmeter_runner/execution/admission.py

Purpose
- Accept execution requests without blocking, and dispatch them FIFO to the
  supervisor so that at most N executions hold a slot at any time.

Functional requirements
- ``submit`` creates a QUEUED record and returns its id immediately; it is
  callable from any thread.
- One long-lived dispatch task waits for a free slot and a non-empty queue,
  then hands the oldest queued id to its own supervision task.
- The queue and the running set are guarded by a single lock.
- Cancellation removes queued work or terminates running work; both resolve
  to FAILED with the cancelled flag set.

Non-functional requirements
- The dispatch loop performs no process I/O.
- No priorities and no retries.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from contextlib import suppress
from typing import Any

import structlog

from jmeter_runner.constants import CANCELLED_MESSAGE
from jmeter_runner.domain import ids
from jmeter_runner.domain.errors import InvalidStateTransition, QueueFullError
from jmeter_runner.domain.models import ExecutionRecord
from jmeter_runner.execution.registry import ExecutionRegistry
from jmeter_runner.execution.supervisor import Supervisor
from jmeter_runner.utils.concurrency import SlotPool


class AdmissionController:
    """FIFO admission of executions under a fixed concurrency limit."""

    def __init__(
        self,
        *,
        registry: ExecutionRegistry,
        supervisor: Supervisor,
        max_concurrent: int,
        max_queued: int | None = None,
        logger: Any | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if max_queued is not None and max_queued < 1:
            raise ValueError("max_queued must be >= 1 when set")
        self._registry = registry
        self._supervisor = supervisor
        self._max_concurrent = max_concurrent
        self._max_queued = max_queued
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._lock = threading.Lock()
        self._queue: deque[str] = deque()
        self._running: set[str] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._slots: SlotPool | None = None
        self._wake: asyncio.Event | None = None
        self._changed: asyncio.Event | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_started(self) -> bool:
        return self._dispatch_task is not None and not self._dispatch_task.done()

    def submit(self, source_file_id: str) -> str:
        """Enqueue a new execution for ``source_file_id`` and return its id.

        Raises ``ValueError`` for malformed ids and ``QueueFullError`` when a
        queue bound is configured and reached. Never waits for capacity.
        """
        ids.validate_file_id(source_file_id)
        with self._lock:
            if self._max_queued is not None and len(self._queue) >= self._max_queued:
                raise QueueFullError(
                    f"execution queue is full ({self._max_queued} queued executions)"
                )
            record = self._registry.create(source_file_id)
            self._queue.append(record.id)
            position = len(self._queue)
        self._logger.info(
            "execution_submitted",
            execution_id=record.id,
            source_file_id=source_file_id,
            queue_position=position,
        )
        self._signal()
        return record.id

    def queue_position(self, execution_id: str) -> int:
        """1-based FIFO position of a queued execution; 0 when not queued."""
        with self._lock:
            try:
                return self._queue.index(execution_id) + 1
            except ValueError:
                return 0

    def has_active_executions(self) -> bool:
        with self._lock:
            if self._queue or self._running:
                return True
        return self._registry.has_active()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            queued = list(self._queue)
            running = sorted(self._running)
        return {
            "max_concurrent": self._max_concurrent,
            "max_queued": self._max_queued,
            "queued": queued,
            "running": running,
            "slots": self._slots.snapshot() if self._slots is not None else None,
            "started": self.is_started,
        }

    def cancel(self, execution_id: str) -> ExecutionRecord:
        """Cancel a queued or running execution; terminal ones raise ``InvalidStateTransition``."""
        record = self._registry.get(execution_id)
        with self._lock:
            was_queued = execution_id in self._queue
            if was_queued:
                self._queue.remove(execution_id)

        if not was_queued and record.is_terminal:
            raise InvalidStateTransition(
                f"execution {execution_id} is already {record.state.value}"
            )

        updated = self._registry.mark_failed(
            execution_id, error_message=CANCELLED_MESSAGE, cancelled=True
        )
        if was_queued:
            self._logger.info("queued_execution_cancelled", execution_id=execution_id)
            self._signal()
            return updated

        terminated = self._supervisor.terminate(execution_id)
        self._logger.info(
            "running_execution_cancelled",
            execution_id=execution_id,
            process_terminated=terminated,
        )
        return updated

    async def start(self) -> None:
        """Start the dispatch task on the running event loop; idempotent."""
        if self.is_started:
            return
        self._loop = asyncio.get_running_loop()
        self._slots = SlotPool(self._max_concurrent)
        self._wake = asyncio.Event()
        self._changed = asyncio.Event()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="admission-dispatch")
        self._logger.info(
            "admission_started",
            max_concurrent=self._max_concurrent,
            max_queued=self._max_queued,
        )
        self._signal()

    async def stop(self) -> None:
        """Stop dispatching and cancel in-flight supervisions. Queued work stays QUEUED."""
        dispatch = self._dispatch_task
        self._dispatch_task = None
        if dispatch is not None:
            dispatch.cancel()
            with suppress(asyncio.CancelledError):
                await dispatch

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._logger.info("admission_stopped", cancelled_supervisions=len(tasks))

    async def join(self) -> None:
        """Wait until the queue and the running set are both empty."""
        if self._changed is None:
            if self.queued_count or self.running_count:
                raise RuntimeError("admission controller is not started")
            return
        while True:
            with self._lock:
                if not self._queue and not self._running:
                    return
                self._changed.clear()
            if not self.is_started and self.queued_count:
                raise RuntimeError("admission controller is not started")
            await self._changed.wait()

    async def _dispatch_loop(self) -> None:
        assert self._slots is not None
        while True:
            await self._slots.claim()
            try:
                execution_id = await self._next_queued()
            except BaseException:
                self._slots.vacate()
                raise
            task = asyncio.create_task(
                self._supervise(execution_id), name=f"supervise-{execution_id}"
            )
            self._tasks[execution_id] = task
            self._logger.debug("execution_dispatched", execution_id=execution_id)

    async def _next_queued(self) -> str:
        assert self._wake is not None
        while True:
            with self._lock:
                if self._queue:
                    execution_id = self._queue.popleft()
                    self._running.add(execution_id)
                    return execution_id
                self._wake.clear()
            await self._wake.wait()

    async def _supervise(self, execution_id: str) -> None:
        try:
            await self._supervisor.supervise(execution_id)
        except asyncio.CancelledError:
            self._resolve_abandoned(execution_id, CANCELLED_MESSAGE, cancelled=True)
            raise
        except Exception as exc:
            self._logger.exception("supervision_crashed", execution_id=execution_id)
            self._resolve_abandoned(execution_id, f"supervision failed: {exc}")
        finally:
            with self._lock:
                self._running.discard(execution_id)
            self._tasks.pop(execution_id, None)
            if self._slots is not None:
                self._slots.vacate()
            self._signal()

    def _resolve_abandoned(
        self, execution_id: str, message: str, *, cancelled: bool = False
    ) -> None:
        with suppress(InvalidStateTransition):
            self._registry.mark_failed(execution_id, error_message=message, cancelled=cancelled)

    def _signal(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._set_events()
        else:
            loop.call_soon_threadsafe(self._set_events)

    def _set_events(self) -> None:
        if self._wake is not None:
            self._wake.set()
        if self._changed is not None:
            self._changed.set()


__all__ = ["AdmissionController"]
