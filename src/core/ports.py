"""Ports (interfaces) used by the core feeds and dispatcher.

Ports define the minimal contracts for storage, remote sources and the chat
platform so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Iterable, List, Protocol, Sequence

from core.models import (
    Beatmapset,
    ChannelKind,
    Control,
    GamemodeUpdate,
    GroupMember,
    OsuGroup,
    ProfileUpdate,
    SentMessage,
    UserAdditionStatus,
    UserDeletionStatus,
)


class StoragePort(Protocol):
    """Storage operations required by the feeds and commands."""

    def list_beatmapset_ids(self) -> List[int]:
        ...

    def insert_beatmapsets(self, beatmapsets: Iterable[Beatmapset]) -> None:
        ...

    def delete_beatmapset(self, beatmapset_id: int) -> None:
        ...

    def get_beatmapsets(self, beatmapset_ids: Iterable[int]) -> List[Beatmapset]:
        ...

    def list_subscribers(self, beatmapset_id: int) -> List[int]:
        ...

    def add_subscription(self, user_id: int, beatmapset_id: int) -> UserAdditionStatus:
        ...

    def remove_subscription(self, user_id: int, beatmapset_id: int) -> UserDeletionStatus:
        ...

    def list_user_subscriptions(self, user_id: int) -> List[int]:
        ...

    def list_group_members(self, group: OsuGroup) -> List[GroupMember]:
        ...

    def insert_group_members(self, group: OsuGroup, members: Iterable[GroupMember]) -> None:
        ...

    def delete_group_members(self, group: OsuGroup, user_ids: Iterable[int]) -> None:
        ...

    def update_gamemodes(self, user_id: int, update: GamemodeUpdate) -> None:
        ...

    def update_profiles(self, updates: Iterable[ProfileUpdate]) -> None:
        ...

    def list_channels(self, kind: ChannelKind) -> List[int]:
        ...

    def add_channel(self, channel_id: int, kind: ChannelKind) -> bool:
        ...

    def remove_channel(self, channel_id: int, kind: ChannelKind) -> bool:
        ...


class OsuSourcePort(Protocol):
    """Remote source of qualified beatmapsets and group members."""

    async def fetch_qualified_ids(self) -> List[int]:
        ...

    async def fetch_beatmapset(self, beatmapset_id: int) -> Beatmapset:
        ...

    async def fetch_beatmapsets(self, beatmapset_ids: Iterable[int]) -> List[Beatmapset]:
        ...

    async def fetch_group_members(self, group: OsuGroup) -> List[GroupMember]:
        ...


class NotificationSinkPort(Protocol):
    """Chat platform operations required by the dispatcher."""

    async def send(
        self,
        channel_id: int,
        content: str,
        controls: Sequence[Control] = (),
    ) -> SentMessage:
        ...

    async def remove_controls(self, message: SentMessage) -> None:
        ...

    async def delete_message(self, message: SentMessage) -> None:
        ...


class InteractionEvent(Protocol):
    """A button press delivered by the chat platform."""

    channel_id: int
    message_id: int
    user_id: int
    custom_id: str

    async def acknowledge(self) -> None:
        ...

    async def respond(self, content: str, ephemeral: bool = True) -> None:
        ...


class FormatterPort(Protocol):
    """Renders notification bodies for the chat platform."""

    def beatmapset(self, beatmapset: Beatmapset, mentions: Sequence[int] = ()) -> str:
        ...

    def member_added(self, member: GroupMember, group: OsuGroup) -> str:
        ...

    def member_removed(self, member: GroupMember, group: OsuGroup) -> str:
        ...

    def member_updated(self, member: GroupMember, update: GamemodeUpdate) -> str:
        ...

    def subscribed_list(self, beatmapsets: Sequence[Beatmapset]) -> str:
        ...

    def owned(self, owner_id: int, content: str) -> str:
        ...
