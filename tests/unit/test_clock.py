"""
tests/unit/test_clock.py - Clock tests

Virtual time must only move on advance(), and wait_for must time out on the
clock it belongs to.
"""

import asyncio

import pytest

from reportsync.core.clock import ManualClock, SystemClock


class TestManualClock:
    """Test ManualClock."""

    def test_starts_at_given_time(self):
        """Test monotonic() reports the start time."""
        assert ManualClock().monotonic() == 0.0
        assert ManualClock(start=42.0).monotonic() == 42.0

    @pytest.mark.asyncio
    async def test_sleep_wakes_only_on_advance(self):
        """Test a sleeper stays blocked until its deadline is passed."""
        clock = ManualClock()
        task = asyncio.ensure_future(clock.sleep(5))
        await clock.settle()

        assert not task.done()
        assert clock.pending_sleepers == 1

        await clock.advance(4)
        assert not task.done()

        await clock.advance(1)
        assert task.done()
        assert clock.monotonic() == 5
        assert clock.pending_sleepers == 0

    @pytest.mark.asyncio
    async def test_sleepers_wake_in_deadline_order(self):
        """Test sleepers are released earliest deadline first."""
        clock = ManualClock()
        woke = []

        async def sleeper(name, seconds):
            await clock.sleep(seconds)
            woke.append((name, clock.monotonic()))

        tasks = [
            asyncio.ensure_future(sleeper("late", 3)),
            asyncio.ensure_future(sleeper("early", 1)),
        ]
        await clock.advance(10)
        await asyncio.gather(*tasks)

        assert woke == [("early", 1), ("late", 3)]
        assert clock.monotonic() == 10

    @pytest.mark.asyncio
    async def test_zero_sleep_yields(self):
        """Test sleep(0) returns without advancing time."""
        clock = ManualClock()
        await clock.sleep(0)
        assert clock.monotonic() == 0


class TestWaitFor:
    """Test Clock.wait_for."""

    @pytest.mark.asyncio
    async def test_returns_result_before_timeout(self):
        """Test a fast awaitable's result is returned."""
        clock = ManualClock()

        async def fast():
            return "done"

        assert await clock.wait_for(fast(), 5) == "done"

    @pytest.mark.asyncio
    async def test_times_out_on_virtual_time(self):
        """Test the awaitable is cancelled when the timeout elapses."""
        clock = ManualClock()
        cancelled = []

        async def slow():
            try:
                await clock.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise
            return "late"

        task = asyncio.ensure_future(clock.wait_for(slow(), 2))
        await clock.advance(2)

        with pytest.raises(asyncio.TimeoutError):
            await task
        assert cancelled == [True]

    @pytest.mark.asyncio
    async def test_none_timeout_waits(self):
        """Test timeout=None awaits directly."""
        clock = ManualClock()

        async def value():
            return 7

        assert await clock.wait_for(value(), None) == 7


class TestSystemClock:
    """Test SystemClock."""

    def test_monotonic_does_not_go_backwards(self):
        clock = SystemClock()
        first = clock.monotonic()
        assert clock.monotonic() >= first

    @pytest.mark.asyncio
    async def test_negative_sleep_is_immediate(self):
        await SystemClock().sleep(-1)
