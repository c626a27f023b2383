"""Lazily populated cache of the channels subscribed to one feed."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from core.errors import MidnightError

LOGGER = logging.getLogger(__name__)


class MembershipCache:
    """In-memory set of channel ids, loaded from the store on first read.

    ``refresh`` applies the additions and removals against the current store
    contents in place, so readers never see an empty set in between. The
    blocking ``loader`` runs in a worker thread.
    """

    def __init__(self, name: str, loader: Callable[[], Iterable[int]]) -> None:
        self._name = name
        self._loader = loader
        self._lock = asyncio.Lock()
        self._members: Optional[set[int]] = None

    @property
    def initialised(self) -> bool:
        return self._members is not None

    async def _ensure(self) -> set[int]:
        if self._members is not None:
            return self._members
        async with self._lock:
            if self._members is None:
                try:
                    self._members = set(await asyncio.to_thread(self._loader))
                except MidnightError:
                    # Stay uninitialised so the next read tries again.
                    LOGGER.exception("Failed to load %s channels", self._name)
                    return set()
                LOGGER.info("Loaded %s %s channels", len(self._members), self._name)
            return self._members

    async def contains(self, channel_id: int) -> bool:
        return channel_id in await self._ensure()

    async def members(self) -> list[int]:
        """Return a snapshot of the cached channel ids."""

        return sorted(await self._ensure())

    async def refresh(self) -> None:
        async with self._lock:
            try:
                latest = set(await asyncio.to_thread(self._loader))
            except MidnightError:
                LOGGER.exception("Failed to refresh %s channels, keeping cached set", self._name)
                return
            if self._members is None:
                self._members = latest
                return
            added = latest - self._members
            removed = self._members - latest
            self._members.difference_update(removed)
            self._members.update(added)
            if added or removed:
                LOGGER.info(
                    "%s channels refreshed: +%s -%s", self._name, len(added), len(removed)
                )

    def invalidate(self) -> None:
        """Forget the cached set; the next read reloads it."""

        self._members = None
