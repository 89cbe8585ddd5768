"""Stop, timeout and slot accounting around supervised work."""

from __future__ import annotations

import asyncio
import gc
import warnings

import pytest

from jmeter_runner.utils.concurrency import SlotPool, StopSignal, wait_for_exit


async def _exit_code(delay: float, code: int = 0) -> int:
    await asyncio.sleep(delay)
    return code


async def test_wait_for_exit_returns_the_work_result() -> None:
    assert await wait_for_exit(_exit_code(0.01, 3), stop=StopSignal(), timeout_seconds=None) == 3


async def test_already_triggered_stop_never_schedules_work() -> None:
    stop = StopSignal()
    stop.trigger()

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(asyncio.CancelledError):
            await wait_for_exit(_exit_code(0.01), stop=stop, timeout_seconds=1.0)
        gc.collect()


async def test_timeout_cancels_the_work() -> None:
    cancelled = asyncio.Event()

    async def _hang() -> int:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return 0

    with pytest.raises(TimeoutError, match="exceeded 0.05 seconds"):
        await wait_for_exit(_hang(), stop=StopSignal(), timeout_seconds=0.05)
    assert cancelled.is_set()


async def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
        await wait_for_exit(_exit_code(0.01), stop=StopSignal(), timeout_seconds=0)


async def test_stop_interrupts_running_work() -> None:
    stop = StopSignal()
    waiter = asyncio.create_task(
        wait_for_exit(_exit_code(60), stop=stop, timeout_seconds=None)
    )
    await asyncio.sleep(0.01)
    stop.trigger()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(waiter, 1.0)
    assert stop.triggered


async def test_work_errors_propagate_unchanged() -> None:
    async def _broken() -> int:
        raise OSError("pipe closed")

    with pytest.raises(OSError, match="pipe closed"):
        await wait_for_exit(_broken(), stop=StopSignal(), timeout_seconds=5.0)


async def test_slot_pool_blocks_claims_beyond_capacity() -> None:
    slots = SlotPool(2)
    await slots.claim()
    await slots.claim()

    third = asyncio.create_task(slots.claim())
    await asyncio.sleep(0)
    assert not third.done()
    assert slots.snapshot() == {"capacity": 2, "occupied": 2, "free": 0}

    slots.vacate()
    await asyncio.wait_for(third, 1.0)
    assert slots.occupied == 2


async def test_cancelled_claim_holds_no_slot() -> None:
    slots = SlotPool(1)
    await slots.claim()
    pending = asyncio.create_task(slots.claim())
    await asyncio.sleep(0)

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    slots.vacate()

    assert slots.snapshot()["free"] == 1


def test_slot_pool_rejects_bad_capacity_and_extra_vacate() -> None:
    with pytest.raises(ValueError, match="capacity must be >= 1"):
        SlotPool(0)
    with pytest.raises(RuntimeError, match="no execution slot is occupied"):
        SlotPool(1).vacate()
