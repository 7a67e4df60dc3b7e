import asyncio

import pytest

from lease_lock.scheduler import AsyncioScheduler

pytestmark = pytest.mark.asyncio


async def test_callback_runs_periodically(scheduler):
    ticks = []

    async def tick():
        ticks.append(asyncio.get_running_loop().time())

    task = scheduler.schedule_periodic(0.05, tick, name="ticker")
    await asyncio.sleep(0.28)
    scheduler.cancel(task)

    assert 3 <= len(ticks) <= 6
    assert task.name == "ticker"


async def test_cancel_is_idempotent(scheduler):
    async def tick():
        return None

    task = scheduler.schedule_periodic(0.05, tick)
    scheduler.cancel(task)
    scheduler.cancel(task)
    task.cancel()
    await task.join()

    assert task.cancelled is True
    assert task.done is True
    assert scheduler.active() == []


async def test_callback_can_cancel_its_own_task(scheduler):
    calls = 0
    holder = {}

    async def tick():
        nonlocal calls
        calls += 1
        scheduler.cancel(holder["task"])

    holder["task"] = scheduler.schedule_periodic(0.02, tick)
    await asyncio.sleep(0.15)

    assert calls == 1
    assert holder["task"].done is True


async def test_cancel_from_another_task_interrupts_callback(scheduler):
    started = asyncio.Event()

    async def slow_tick():
        started.set()
        await asyncio.sleep(10)

    task = scheduler.schedule_periodic(0.01, slow_tick)
    await asyncio.wait_for(started.wait(), timeout=1)

    scheduler.cancel(task)
    await asyncio.wait_for(task.join(), timeout=1)

    assert task.done is True


async def test_callback_errors_do_not_stop_the_task(scheduler, caplog):
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        raise RuntimeError("tick failed")

    task = scheduler.schedule_periodic(0.02, flaky, name="flaky")
    await asyncio.sleep(0.11)
    scheduler.cancel(task)

    assert calls >= 2
    assert "periodic task callback failed name=flaky" in caplog.text


async def test_shutdown_cancels_everything():
    scheduler = AsyncioScheduler()

    async def tick():
        return None

    tasks = [scheduler.schedule_periodic(0.05, tick) for _ in range(3)]
    await scheduler.shutdown()

    assert all(task.done for task in tasks)
    assert scheduler.active() == []


async def test_rejects_non_positive_interval(scheduler):
    async def tick():
        return None

    with pytest.raises(ValueError):
        scheduler.schedule_periodic(0, tick)
