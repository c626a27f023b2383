"""Time source used by loops and timeouts.

Loops never call ``asyncio.sleep`` directly so tests can fast-forward time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class AsyncioClock:
    """Wall-clock implementation backed by the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
