"""User subscriptions to beatmapsets and channel subscriptions to feeds."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Mapping, Union

from core.errors import MalformedMatchError, NoMatchError
from core.membership import MembershipCache
from core.models import (
    Beatmapset,
    ChannelKind,
    SubscriptionMode,
    UserAdditionStatus,
    UserDeletionStatus,
)
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

BEATMAPSET_LINK = re.compile(r"https://osu\.ppy\.sh/beatmapsets/(\d+)")


def parse_beatmapset_link(text: str) -> int:
    """Extract the beatmapset id from an osu! beatmapset link."""

    match = BEATMAPSET_LINK.search(text)
    if match is None:
        raise NoMatchError(f"No beatmapset link in {text!r}")
    try:
        beatmapset_id = int(match.group(1))
    except ValueError as exc:
        raise MalformedMatchError(f"Bad beatmapset id in {text!r}") from exc
    # Ids are stored as signed 32-bit integers by the osu! API.
    if beatmapset_id > 2**31 - 1:
        raise MalformedMatchError(f"Beatmapset id out of range in {text!r}")
    return beatmapset_id


class SubscriptionService:
    """Command-facing operations over the store and channel caches."""

    def __init__(
        self,
        storage: StoragePort,
        channels: Mapping[ChannelKind, MembershipCache],
    ) -> None:
        self._storage = storage
        self._channels = channels

    async def subscribe_link(
        self, user_id: int, link: str, mode: SubscriptionMode
    ) -> Union[UserAdditionStatus, UserDeletionStatus]:
        """Subscribe or unsubscribe ``user_id`` to the beatmapset in ``link``."""

        beatmapset_id = parse_beatmapset_link(link)
        status: Union[UserAdditionStatus, UserDeletionStatus]
        if mode is SubscriptionMode.SUBSCRIBE:
            status = await asyncio.to_thread(self._storage.add_subscription, user_id, beatmapset_id)
        else:
            status = await asyncio.to_thread(
                self._storage.remove_subscription, user_id, beatmapset_id
            )
        LOGGER.info("User %s %s beatmapset %s: %s", user_id, mode.value, beatmapset_id, status)
        return status

    def _load_subscribed(self, user_id: int) -> List[Beatmapset]:
        return self._storage.get_beatmapsets(self._storage.list_user_subscriptions(user_id))

    async def subscribed(self, user_id: int) -> List[Beatmapset]:
        """Return the user's beatmapsets, closest to being ranked first."""

        beatmapsets = await asyncio.to_thread(self._load_subscribed, user_id)
        # Unknown ranked dates sort last.
        return sorted(
            beatmapsets,
            key=lambda item: (item.ranked_date is None, item.ranked_date or 0, item.id),
        )

    async def set_channel(self, channel_id: int, kind: ChannelKind, enabled: bool) -> bool:
        """Enable or disable a feed for a channel. Returns True when it changed."""

        update = self._storage.add_channel if enabled else self._storage.remove_channel
        changed = await asyncio.to_thread(update, channel_id, kind)
        if changed:
            await self._channels[kind].refresh()
        return changed
