from __future__ import annotations

import asyncio
from typing import Any, Optional

from core.config import FeedConfig
from core.reconciler import FeedLoop, FeedState

CONFIG = FeedConfig(name="test", interval=900, backoff=180)


class RecordingFeed:
    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.states: list[tuple[str, FeedState]] = []
        self.loop: Optional[FeedLoop] = None

    def _record(self, stage: str) -> None:
        assert self.loop is not None
        self.states.append((stage, self.loop.state))
        if stage == self.fail_on:
            raise RuntimeError(f"{stage} failed")

    async def fetch(self) -> Any:
        self._record("fetch")
        return [1, 2]

    async def diff(self, snapshot: Any) -> Any:
        self._record("diff")
        return {"snapshot": snapshot}

    async def persist(self, changes: Any) -> None:
        self._record("persist")

    async def notify(self, changes: Any) -> None:
        self._record("notify")


def _loop(feed: RecordingFeed, clock, limit: int = 1) -> FeedLoop:
    loop = FeedLoop(feed, clock, CONFIG)
    feed.loop = loop

    def stop_after_limit() -> None:
        if len(clock.sleeps) >= limit:
            loop.stop()

    clock.on_sleep = stop_after_limit
    return loop


def test_successful_cycle_walks_every_state(fast_clock) -> None:
    feed = RecordingFeed()
    loop = _loop(feed, fast_clock)

    assert asyncio.run(loop.run_once()) is True

    assert feed.states == [
        ("fetch", FeedState.FETCHING),
        ("diff", FeedState.DIFFING),
        ("persist", FeedState.PERSISTING),
        ("notify", FeedState.NOTIFYING),
    ]
    assert loop.state is FeedState.IDLE
    assert loop.last_success is not None


def test_failed_stage_moves_to_backoff_and_skips_later_stages(fast_clock) -> None:
    feed = RecordingFeed(fail_on="persist")
    loop = _loop(feed, fast_clock)

    assert asyncio.run(loop.run_once()) is False

    assert [stage for stage, _ in feed.states] == ["fetch", "diff", "persist"]
    assert loop.state is FeedState.BACKOFF
    assert loop.failures == 1
    assert loop.last_success is None


def test_run_sleeps_interval_after_success(fast_clock) -> None:
    loop = _loop(RecordingFeed(), fast_clock, limit=3)

    asyncio.run(loop.run())

    assert fast_clock.sleeps == [900, 900, 900]
    assert loop.cycles == 3
    assert loop.stopped


def test_run_sleeps_backoff_after_failure_and_recovers(fast_clock) -> None:
    feed = RecordingFeed(fail_on="fetch")
    loop = _loop(feed, fast_clock, limit=2)

    asyncio.run(loop.run())

    assert fast_clock.sleeps == [180, 180]
    assert loop.failures == 2
    # Back to idle once the backoff sleep is over.
    assert loop.state is FeedState.IDLE


def test_stop_before_run_skips_cycles(fast_clock) -> None:
    feed = RecordingFeed()
    loop = _loop(feed, fast_clock, limit=1)
    loop.stop()

    asyncio.run(loop.run())

    assert feed.states == []
    assert fast_clock.sleeps == []
