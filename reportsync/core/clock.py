"""
core/clock.py - Injectable clocks.

Every delay, debounce window and timeout in the core reads time through a
Clock so tests can drive it deterministically.

MODES:
- SystemClock: real monotonic time and asyncio sleeps
- ManualClock: virtual time, sleepers wake only when advance() passes them
"""

from __future__ import annotations
from typing import Any, Awaitable, List, Optional, Tuple
import asyncio
import heapq
import itertools
import time


class Clock:
    """Base clock interface."""

    def monotonic(self) -> float:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError

    async def wait_for(self, awaitable: Awaitable[Any], timeout: Optional[float]) -> Any:
        """
        Await with a timeout measured on this clock.

        On expiry the awaitable is cancelled and asyncio.TimeoutError raised.
        """
        if timeout is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        timer = asyncio.ensure_future(self.sleep(timeout))
        try:
            await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            timer.cancel()
            raise

        if task.done():
            timer.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise asyncio.TimeoutError(f"Timed out after {timeout}s")


class SystemClock(Clock):
    """Wall-clock implementation used in production."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """
    Virtual clock for tests.

    Time only moves when advance() is awaited. Sleepers whose deadline is
    reached are woken in deadline order, and the event loop is given a few
    turns after each wake-up so the woken coroutines can run to their next
    suspension point.
    """

    def __init__(self, start: float = 0.0, settle_rounds: int = 50):
        self._now = start
        self._settle_rounds = settle_rounds
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._counter = itertools.count()

    def monotonic(self) -> float:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        """Number of sleepers still waiting."""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._counter), future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, waking every sleeper on the way."""
        target = self._now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    async def settle(self) -> None:
        """Yield to the event loop until pending callbacks have run."""
        for _ in range(self._settle_rounds):
            await asyncio.sleep(0)
