"""Reconciliation loop.

A feed is reconciled in four stages (fetch, diff, persist, notify). The loop
runs one cycle, then sleeps for the feed interval, or for the backoff period
when any stage raised. All waiting goes through the injected clock.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Protocol

from core.clock import Clock
from core.config import FeedConfig

LOGGER = logging.getLogger(__name__)


class FeedState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"
    BACKOFF = "backoff"


class Feed(Protocol):
    """One reconcilable collection (qualified beatmapsets, group members)."""

    async def fetch(self) -> Any:
        ...

    async def diff(self, snapshot: Any) -> Any:
        ...

    async def persist(self, changes: Any) -> None:
        ...

    async def notify(self, changes: Any) -> None:
        ...


class FeedLoop:
    """Drives a feed through its stages forever, until stopped."""

    def __init__(self, feed: Feed, clock: Clock, config: FeedConfig) -> None:
        self._feed = feed
        self._clock = clock
        self._config = config
        self._stopped = False
        self.state = FeedState.IDLE
        self.cycles = 0
        self.failures = 0
        self.last_success: Optional[float] = None

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Ask the loop to exit; checked between cycles."""

        self._stopped = True

    async def run_once(self) -> bool:
        """Run a single cycle. Returns False when a stage failed."""

        started = self._clock.monotonic()
        self.cycles += 1
        LOGGER.info("%s cycle %s started", self.name, self.cycles)
        try:
            self.state = FeedState.FETCHING
            snapshot = await self._feed.fetch()
            self.state = FeedState.DIFFING
            changes = await self._feed.diff(snapshot)
            self.state = FeedState.PERSISTING
            await self._feed.persist(changes)
            self.state = FeedState.NOTIFYING
            await self._feed.notify(changes)
        except Exception:
            # Loop boundary: any stage failure ends the cycle, never the task.
            LOGGER.exception("%s cycle failed while %s", self.name, self.state.value)
            self.failures += 1
            self.state = FeedState.BACKOFF
            return False

        self.state = FeedState.IDLE
        self.last_success = self._clock.monotonic()
        LOGGER.info(
            "%s cycle %s finished in %.2fs",
            self.name,
            self.cycles,
            self.last_success - started,
        )
        return True

    async def run(self) -> None:
        while not self._stopped:
            ok = await self.run_once()
            delay = self._config.interval if ok else self._config.backoff
            if not ok:
                LOGGER.warning("%s backing off for %ss", self.name, delay)
            await self._clock.sleep(delay)
            if self.state is FeedState.BACKOFF:
                self.state = FeedState.IDLE
        LOGGER.info("%s loop stopped", self.name)
