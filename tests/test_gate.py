from __future__ import annotations

import asyncio

import pytest

from deka.execution.gate import ConcurrencyGate


@pytest.mark.asyncio
async def test_gate_never_admits_more_than_capacity() -> None:
    gate = ConcurrencyGate(2)
    peak = 0

    async def worker() -> None:
        nonlocal peak
        async with gate.slot():
            peak = max(peak, gate.in_use)
            await asyncio.sleep(0.005)

    await asyncio.gather(*(worker() for _ in range(10)))

    assert peak == 2
    assert gate.in_use == 0


@pytest.mark.asyncio
async def test_zero_capacity_is_unbounded() -> None:
    gate = ConcurrencyGate(0)
    release = asyncio.Event()
    entered = 0

    async def worker() -> None:
        nonlocal entered
        async with gate.slot():
            entered += 1
            await release.wait()

    tasks = [asyncio.create_task(worker()) for _ in range(25)]
    await asyncio.sleep(0.01)
    assert gate.unbounded
    assert entered == 25
    release.set()
    await asyncio.gather(*tasks)


@pytest.mark.asyncio
async def test_slot_is_released_when_the_body_raises() -> None:
    gate = ConcurrencyGate(1)

    with pytest.raises(RuntimeError):
        async with gate.slot():
            raise RuntimeError("boom")

    assert gate.in_use == 0
    await asyncio.wait_for(gate.acquire(), timeout=1)
    gate.release()


@pytest.mark.asyncio
async def test_slot_is_released_on_cancellation() -> None:
    gate = ConcurrencyGate(1)

    async def holder() -> None:
        async with gate.slot():
            await asyncio.sleep(10)

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    assert gate.in_use == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert gate.in_use == 0


def test_unmatched_release_is_an_error() -> None:
    with pytest.raises(RuntimeError):
        ConcurrencyGate(3).release()


def test_negative_capacity_is_rejected() -> None:
    with pytest.raises(ValueError):
        ConcurrencyGate(-1)
