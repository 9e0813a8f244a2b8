"""Tests for the named periodic-task scheduler."""

import asyncio

import pytest

from src.monitor.scheduler import Scheduler


@pytest.mark.asyncio
async def test_duplicate_name_rejected():
    sched = Scheduler()

    async def noop():
        return None

    sched.add("poll", 10, noop)
    with pytest.raises(ValueError):
        sched.add("poll", 5, noop)


@pytest.mark.asyncio
async def test_failing_run_is_counted_and_loop_continues():
    sched = Scheduler()
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")

    sched.add("flaky", 0.01, flaky)
    sched.start()
    await asyncio.sleep(0.1)
    await sched.stop()

    task = sched.tasks["flaky"]
    assert task.failures == 1
    assert task.runs >= 2


@pytest.mark.asyncio
async def test_one_task_failing_does_not_block_another():
    sched = Scheduler()
    ran = asyncio.Event()

    async def broken():
        raise RuntimeError("always")

    async def healthy():
        ran.set()

    sched.add("broken", 0.01, broken)
    sched.add("healthy", 0.01, healthy)
    sched.start()
    await asyncio.wait_for(ran.wait(), timeout=1.0)
    await sched.stop()

    assert sched.tasks["broken"].failures >= 1


@pytest.mark.asyncio
async def test_initial_delay_defers_first_run():
    sched = Scheduler()
    calls = 0

    async def count():
        nonlocal calls
        calls += 1

    sched.add("cleanup", 60, count, initial_delay_sec=60)
    sched.start()
    await asyncio.sleep(0.05)
    await sched.stop()

    assert calls == 0


@pytest.mark.asyncio
async def test_run_once_propagates_cancellation():
    sched = Scheduler()

    async def cancelled():
        raise asyncio.CancelledError

    task = sched.add("c", 1, cancelled)
    with pytest.raises(asyncio.CancelledError):
        await sched.run_once(task)
    assert task.failures == 0
