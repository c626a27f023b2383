"""Qualified beatmapset feed.

Tracks the set of qualified beatmapsets. New entries are announced with
subscribe controls; entries that left the qualified list are announced with
their new status and a mention of everyone subscribed to them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from core.dispatcher import NotificationDispatcher
from core.differ import diff_ids
from core.models import Beatmapset, IdDiff
from core.ports import OsuSourcePort, StoragePort

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapfeedSnapshot:
    remote_ids: List[int]
    local_ids: List[int]


@dataclass
class MapfeedChanges:
    ids: IdDiff
    added: List[Beatmapset] = field(default_factory=list)
    removed: List[Beatmapset] = field(default_factory=list)
    populate: bool = False
    # Filled while persisting, before the removed rows are deleted.
    subscribers: Dict[int, List[int]] = field(default_factory=dict)


class MapfeedFeed:
    """Reconciles qualified beatmapsets against the stored snapshot."""

    def __init__(
        self,
        source: OsuSourcePort,
        storage: StoragePort,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._source = source
        self._storage = storage
        self._dispatcher = dispatcher
        # Silent population only applies to the first cycle after startup.
        self._started = False

    async def fetch(self) -> MapfeedSnapshot:
        remote_ids = await self._source.fetch_qualified_ids()
        local_ids = await asyncio.to_thread(self._storage.list_beatmapset_ids)
        return MapfeedSnapshot(remote_ids=remote_ids, local_ids=local_ids)

    async def diff(self, snapshot: MapfeedSnapshot) -> MapfeedChanges:
        ids = diff_ids(snapshot.remote_ids, snapshot.local_ids)
        changes = MapfeedChanges(ids=ids, populate=not self._started and not snapshot.local_ids)
        # Entities are resolved here so persist only ever sees complete records.
        if ids.added:
            changes.added = await self._source.fetch_beatmapsets(ids.added)
        if ids.removed:
            changes.removed = await self._source.fetch_beatmapsets(ids.removed)
        LOGGER.info(
            "mapfeed diff: +%s -%s (resolved +%s -%s)",
            len(ids.added),
            len(ids.removed),
            len(changes.added),
            len(changes.removed),
        )
        return changes

    async def persist(self, changes: MapfeedChanges) -> None:
        if changes.added:
            await asyncio.to_thread(self._storage.insert_beatmapsets, changes.added)
        for beatmapset in changes.removed:
            changes.subscribers[beatmapset.id] = await asyncio.to_thread(
                self._storage.list_subscribers, beatmapset.id
            )
            await asyncio.to_thread(self._storage.delete_beatmapset, beatmapset.id)

        unresolved = (len(changes.ids.added) - len(changes.added)) + (
            len(changes.ids.removed) - len(changes.removed)
        )
        if unresolved:
            LOGGER.warning("%s beatmapsets left for the next cycle", unresolved)
        self._started = True

    async def notify(self, changes: MapfeedChanges) -> None:
        if changes.populate:
            LOGGER.info("Populated %s beatmapsets without notifying", len(changes.added))
            return
        await self._dispatcher.notify_beatmapsets(changes.added)
        await self._dispatcher.notify_beatmapsets(changes.removed, mentions=changes.subscribers)
