"""Group member feed.

Every cycle scrapes the tracked osu! groups and announces members who joined,
left, or changed the gamemodes they cover.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from core.dispatcher import NotificationDispatcher
from core.differ import diff_members, profile_updates
from core.models import TRACKED_GROUPS, GroupDiff, GroupMember, OsuGroup, ProfileUpdate
from core.ports import OsuSourcePort, StoragePort

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupSnapshot:
    group: OsuGroup
    remote: List[GroupMember]
    local: List[GroupMember]


@dataclass
class GroupChanges:
    group: OsuGroup
    diff: GroupDiff
    profiles: List[ProfileUpdate] = field(default_factory=list)
    populate: bool = False


class GroupFeed:
    """Reconciles the members of each tracked group."""

    def __init__(
        self,
        source: OsuSourcePort,
        storage: StoragePort,
        dispatcher: NotificationDispatcher,
        groups: Sequence[OsuGroup] = TRACKED_GROUPS,
    ) -> None:
        self._source = source
        self._storage = storage
        self._dispatcher = dispatcher
        self._groups = tuple(groups)

    async def fetch(self) -> List[GroupSnapshot]:
        snapshots = []
        for group in self._groups:
            remote = await self._source.fetch_group_members(group)
            local = await asyncio.to_thread(self._storage.list_group_members, group)
            snapshots.append(GroupSnapshot(group=group, remote=remote, local=local))
        return snapshots

    async def diff(self, snapshots: List[GroupSnapshot]) -> List[GroupChanges]:
        changes = []
        for snapshot in snapshots:
            diff = diff_members(snapshot.remote, snapshot.local, snapshot.group)
            changes.append(
                GroupChanges(
                    group=snapshot.group,
                    diff=diff,
                    profiles=profile_updates(snapshot.remote, snapshot.local),
                    populate=not snapshot.local,
                )
            )
        return changes

    async def persist(self, changes: List[GroupChanges]) -> None:
        # The store is synchronous; every call runs in a worker thread.
        storage = self._storage
        for change in changes:
            diff = change.diff
            if change.profiles:
                await asyncio.to_thread(storage.update_profiles, change.profiles)
            if diff.added:
                await asyncio.to_thread(storage.insert_group_members, change.group, diff.added)
            if diff.removed:
                removed_ids = [member.id for member in diff.removed]
                await asyncio.to_thread(storage.delete_group_members, change.group, removed_ids)
            for member, update in diff.updated:
                await asyncio.to_thread(storage.update_gamemodes, member.id, update)

    async def notify(self, changes: List[GroupChanges]) -> None:
        summary: Dict[str, int] = {}
        for change in changes:
            if change.populate:
                LOGGER.info(
                    "Populated %s with %s members without notifying",
                    change.group.value,
                    len(change.diff.added),
                )
                continue
            if change.diff.is_empty():
                continue
            summary[change.group.value] = (
                len(change.diff.added) + len(change.diff.removed) + len(change.diff.updated)
            )
            await self._dispatcher.notify_group_diff(change.group, change.diff)
        if summary:
            LOGGER.info("Group changes announced: %s", summary)
