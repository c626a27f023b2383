from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest


class ManualClock:
    """Clock for tests: time only moves when the test moves it.

    By default ``sleep`` parks until ``advance`` passes its deadline. With
    ``autoadvance`` every sleep jumps time forward and returns at once, which
    suits loops driven to completion inside one ``asyncio.run``.
    """

    def __init__(self, now: float = 0.0, autoadvance: bool = False) -> None:
        self.now = now
        self.autoadvance = autoadvance
        self.sleeps: list[float] = []
        # Called after each sleep is recorded, e.g. to stop a loop.
        self.on_sleep: Optional[Callable[[], None]] = None
        self._waiters: list[tuple[float, asyncio.Future]] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep()
        if self.autoadvance:
            self.now += seconds
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + seconds, future))
        await future

    async def advance(self, seconds: float) -> None:
        # Let freshly created tasks reach their sleep before time moves.
        for _ in range(5):
            await asyncio.sleep(0)
        self.now += seconds
        for deadline, future in list(self._waiters):
            if deadline <= self.now and not future.done():
                future.set_result(None)
                self._waiters.remove((deadline, future))
        for _ in range(5):
            await asyncio.sleep(0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fast_clock() -> ManualClock:
    return ManualClock(autoadvance=True)
