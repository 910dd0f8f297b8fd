"""
Tests for the cancellable timer group.
"""

import asyncio

from cachewatch.timers import TimerGroup


async def test_call_later_runs_once():
    timers = TimerGroup()
    calls = []
    timers.call_later(0.01, lambda: calls.append(1))

    await asyncio.sleep(0.05)
    assert calls == [1]
    assert len(timers) == 0


async def test_call_every_repeats_until_cancelled():
    timers = TimerGroup()
    calls = []

    async def tick():
        calls.append(1)

    timers.call_every(0.01, tick)
    await asyncio.sleep(0.06)
    timers.cancel_all()
    seen = len(calls)

    await asyncio.sleep(0.03)
    assert seen >= 2
    assert len(calls) == seen
    assert len(timers) == 0


async def test_cancel_all_prevents_pending_calls():
    timers = TimerGroup()
    calls = []
    timers.call_later(0.02, lambda: calls.append(1))
    timers.cancel_all()

    await asyncio.sleep(0.04)
    assert calls == []


async def test_callback_may_cancel_its_own_group():
    timers = TimerGroup()
    finished = []

    async def restart():
        timers.cancel_all()
        await asyncio.sleep(0)
        finished.append(True)

    timers.call_every(0.01, restart)
    await asyncio.sleep(0.05)

    assert finished == [True]


async def test_failing_callback_keeps_the_timer_alive(caplog):
    timers = TimerGroup()
    calls = []

    def flaky():
        calls.append(1)
        raise ValueError("bad tick")

    timers.call_every(0.01, flaky, name="flaky")
    await asyncio.sleep(0.05)
    timers.cancel_all()

    assert len(calls) >= 2
    assert "Timer callback flaky failed" in caplog.text
