"""
Test suite for DurationTimer.

Ticks are shortened to keep the suite fast; assertions allow one tick of slack.
"""

import asyncio

import pytest
from src.calling.timer import DurationTimer, format_duration

TICK = 0.05


@pytest.fixture
async def timer(ready_controller):
    timer = DurationTimer(ready_controller, tick_seconds=TICK)
    yield timer
    timer.close()


async def _connect(controller, agent, address="+14155550123"):
    await controller.place_call(address)
    handle = agent.calls[-1]
    handle.emit_state("Connected")
    return handle


async def test_timer_idle_until_ongoing(timer, ready_controller):
    await ready_controller.place_call("+14155550123")
    await asyncio.sleep(TICK * 3)

    assert not timer.running
    assert timer.elapsed == 0


async def test_timer_counts_while_ongoing_and_stops_on_disconnect(
    timer, ready_controller, fake_agent
):
    handle = await _connect(ready_controller, fake_agent)
    assert timer.running

    await asyncio.sleep(TICK * 5.5)
    handle.emit_state("Disconnected")

    assert not timer.running
    stopped_at = timer.elapsed
    assert 4 <= stopped_at <= 6

    await asyncio.sleep(TICK * 3)
    assert timer.elapsed == stopped_at


async def test_timer_task_is_cancelled_not_ignored(timer, ready_controller, fake_agent):
    handle = await _connect(ready_controller, fake_agent)
    task = timer._task

    handle.emit_state("Disconnected")
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert timer._task is None
    assert task.cancelled()


async def test_next_call_restarts_from_zero(timer, ready_controller, fake_agent):
    handle = await _connect(ready_controller, fake_agent)
    await asyncio.sleep(TICK * 3.5)
    handle.emit_state("Disconnected")
    assert timer.elapsed >= 2

    ready_controller.reset()
    await _connect(ready_controller, fake_agent, "8:acs:abc-123")

    assert timer.elapsed == 0
    assert timer.running


async def test_tick_listeners_receive_elapsed(timer, ready_controller, fake_agent):
    ticks = []
    timer.add_tick_listener(ticks.append)

    handle = await _connect(ready_controller, fake_agent)
    await asyncio.sleep(TICK * 2.5)
    handle.emit_state("Disconnected")

    assert ticks
    assert ticks == list(range(1, len(ticks) + 1))
    assert ticks[-1] == timer.elapsed


async def test_close_unsubscribes(ready_controller, fake_agent):
    timer = DurationTimer(ready_controller, tick_seconds=TICK)
    timer.close()

    await _connect(ready_controller, fake_agent)

    assert not timer.running


def test_invalid_tick_rejected(controller):
    with pytest.raises(ValueError):
        DurationTimer(controller, tick_seconds=0)


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0:00:00"), (5, "0:00:05"), (65, "0:01:05"), (3725, "1:02:05"), (-3, "0:00:00")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
