from __future__ import annotations

import asyncio

import pytest

from smartdrive._scheduler import AsyncioScheduler, ManualScheduler


def test_manual_scheduler_fires_timers_in_due_order() -> None:
    scheduler = ManualScheduler()
    fired: list[str] = []
    scheduler.call_later(2.0, lambda: fired.append("late"))
    scheduler.call_later(1.0, lambda: fired.append("early"))
    ticker = scheduler.call_every(1.5, lambda: fired.append("tick"))

    scheduler.advance(3.0)
    ticker.cancel()
    scheduler.advance(3.0)

    assert fired == ["early", "tick", "late", "tick"]
    assert scheduler.now() == 6.0
    assert scheduler.active_timers == 0


def test_cancel_is_idempotent() -> None:
    scheduler = ManualScheduler()
    handle = scheduler.call_later(1.0, lambda: None)

    handle.cancel()
    handle.cancel()

    assert handle.cancelled
    assert scheduler.active_timers == 0


def test_failing_interval_callback_keeps_running() -> None:
    scheduler = ManualScheduler()
    calls: list[int] = []

    def _boom() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    scheduler.call_every(1.0, _boom)
    scheduler.advance(3.0)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_asyncio_scheduler_runs_interval_and_spawned_tasks() -> None:
    scheduler = AsyncioScheduler()
    ticks: list[int] = []
    done = asyncio.Event()

    async def _work() -> None:
        done.set()

    handle = scheduler.call_every(0.01, lambda: ticks.append(1))
    scheduler.spawn(_work())
    await asyncio.wait_for(done.wait(), timeout=1.0)
    await asyncio.sleep(0.05)
    handle.cancel()

    assert ticks
    await scheduler.aclose()
