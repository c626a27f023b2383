"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

MAX_CONCURRENT_REQUESTS = 16


@dataclass(frozen=True)
class FeedConfig:
    """Timing for one reconciliation loop, in seconds."""

    name: str
    interval: float
    backoff: float


MAPFEED = FeedConfig(name="mapfeed", interval=15 * 60, backoff=3 * 60)
GROUPS = FeedConfig(name="groups", interval=4 * 60 * 60, backoff=60)


@dataclass(frozen=True)
class DispatchConfig:
    """Notification settings consumed by the dispatcher."""

    button_lifetime: float = 120 * 60


@dataclass(frozen=True)
class StoreRetryConfig:
    """Bounded retry applied to every store operation."""

    attempts: int = 5
    delay: float = 0.1
