import asyncio

import pytest

from dictanote.errors import GuardBusy, InvalidDuration
from dictanote.guard import DurationGuard, format_elapsed


def test_format_elapsed():
    assert format_elapsed(0) == "00:00.00"
    assert format_elapsed(61_230) == "01:01.23"
    assert format_elapsed(-5) == "00:00.00"


@pytest.mark.parametrize("value", [1, 45, 120])
def test_set_minutes_accepts_range(value):
    guard = DurationGuard()
    assert guard.set_minutes(value) == value
    assert guard.max_duration_ms == value * 60_000


@pytest.mark.parametrize("value", [0, 121, "abc", 2.5])
def test_set_minutes_rejects_and_keeps_previous(value):
    guard = DurationGuard(minutes=30)
    with pytest.raises(InvalidDuration):
        guard.set_minutes(value)
    assert guard.minutes == 30


def test_constructor_rejects_invalid_minutes():
    with pytest.raises(InvalidDuration):
        DurationGuard(minutes=0)


@pytest.mark.asyncio
async def test_set_minutes_rejected_while_armed():
    guard = DurationGuard(minutes=10)
    guard.arm(lambda: None)
    try:
        with pytest.raises(GuardBusy):
            guard.set_minutes(20)
        assert guard.minutes == 10
    finally:
        guard.disarm()
    assert guard.set_minutes(20) == 20


@pytest.mark.asyncio
async def test_forced_stop_fires_once_with_notification():
    calls = []
    guard = DurationGuard(minutes=1, notifier=lambda: calls.append("tone"))
    guard.ms_per_minute = 20

    guard.arm(lambda: calls.append("stop"))
    await asyncio.sleep(0.1)

    assert calls == ["tone", "stop"]
    assert guard.forced
    assert not guard.armed


@pytest.mark.asyncio
async def test_forced_stop_runs_coroutine_callback():
    done = asyncio.Event()

    async def on_limit():
        done.set()

    guard = DurationGuard(minutes=1)
    guard.ms_per_minute = 10
    guard.arm(on_limit)
    await asyncio.wait_for(done.wait(), timeout=1)
    await guard.wait_forced()
    assert guard.forced


@pytest.mark.asyncio
async def test_disarm_before_limit_cancels_forced_stop():
    calls = []
    guard = DurationGuard(minutes=1)
    guard.ms_per_minute = 50
    guard.arm(lambda: calls.append("stop"))
    guard.disarm()
    await asyncio.sleep(0.1)
    assert calls == []
    assert not guard.forced


@pytest.mark.asyncio
async def test_ticks_report_elapsed_time():
    ticks = []
    guard = DurationGuard(minutes=1, tick_interval_ms=5)
    guard.arm(lambda: None, on_tick=ticks.append)
    await asyncio.sleep(0.05)
    guard.disarm()
    assert len(ticks) >= 2
    assert ticks == sorted(ticks)


@pytest.mark.asyncio
async def test_failing_notifier_still_stops():
    calls = []

    def broken():
        raise RuntimeError("no speaker")

    guard = DurationGuard(minutes=1, notifier=broken)
    guard.ms_per_minute = 10
    guard.arm(lambda: calls.append("stop"))
    await asyncio.sleep(0.1)
    assert calls == ["stop"]
