"""
jmeter-runner — execution concurrency helpers

File: src/jmeter_runner/utils/concurrency.py

Purpose
- ``SlotPool`` bounds how many executions the dispatcher hands out at once.
- ``StopSignal`` and ``wait_for_exit`` let a supervisor race a running
  JMeter process against cancellation and the configured timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


class StopSignal:
    """One-shot request to stop a supervised execution."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def trigger(self) -> None:
        self._event.set()

    @property
    def triggered(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class SlotPool:
    """Execution slots shared by the dispatcher and its supervision tasks."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("slot capacity must be >= 1")
        self._capacity = capacity
        self._occupied = 0
        self._free = asyncio.Semaphore(capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def occupied(self) -> int:
        return self._occupied

    async def claim(self) -> None:
        # A claim cancelled while waiting holds nothing.
        await self._free.acquire()
        self._occupied += 1

    def vacate(self) -> None:
        if self._occupied == 0:
            raise RuntimeError("no execution slot is occupied")
        self._occupied -= 1
        self._free.release()

    def snapshot(self) -> dict[str, int]:
        return {
            "capacity": self._capacity,
            "occupied": self._occupied,
            "free": self._capacity - self._occupied,
        }


async def wait_for_exit(
    work: Coroutine[Any, Any, T],
    *,
    stop: StopSignal,
    timeout_seconds: float | None,
) -> T:
    """Await ``work`` unless ``stop`` fires or ``timeout_seconds`` elapses first.

    A triggered stop raises ``asyncio.CancelledError``; an elapsed timeout
    raises ``TimeoutError``. ``work`` is cancelled in both cases and never
    left unawaited.
    """
    if timeout_seconds is not None and timeout_seconds <= 0:
        work.close()
        raise ValueError("timeout_seconds must be > 0")
    if stop.triggered:
        work.close()
        raise asyncio.CancelledError("execution stopped")

    worker = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(stop.wait())
    try:
        async with asyncio.timeout(timeout_seconds):
            await asyncio.wait({worker, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except TimeoutError:
        raise TimeoutError(f"execution exceeded {timeout_seconds} seconds") from None
    finally:
        for future in (worker, watcher):
            future.cancel()
        await asyncio.gather(worker, watcher, return_exceptions=True)

    if worker.cancelled():
        raise asyncio.CancelledError("execution stopped")
    return worker.result()


__all__ = [
    "SlotPool",
    "StopSignal",
    "wait_for_exit",
]
