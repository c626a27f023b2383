from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Sequence

from adapters.sqlite_storage import SQLiteStorage
from core.clock import Clock
from core.config import DispatchConfig, FeedConfig
from core.dispatcher import NotificationDispatcher
from core.errors import RemoteError
from core.groups import GroupFeed
from core.mapfeed import MapfeedFeed
from core.membership import MembershipCache
from core.models import (
    Beatmap,
    Beatmapset,
    BeatmapStatus,
    ChannelKind,
    Control,
    Gamemode,
    GamemodeUpdate,
    GroupMember,
    OsuGroup,
    SentMessage,
)
from core.reconciler import FeedLoop, FeedState

BN = OsuGroup.BEATMAP_NOMINATOR
CHANNEL = -100


class FakeSource:
    def __init__(self) -> None:
        self.qualified: List[int] = []
        self.beatmapsets: Dict[int, Beatmapset] = {}
        self.members: Dict[OsuGroup, List[GroupMember]] = {}
        self.down = False

    async def fetch_qualified_ids(self) -> List[int]:
        if self.down:
            raise RemoteError("osu! is down", status=503)
        return list(self.qualified)

    async def fetch_beatmapset(self, beatmapset_id: int) -> Beatmapset:
        try:
            return self.beatmapsets[beatmapset_id]
        except KeyError:
            raise RemoteError("not found", status=404) from None

    async def fetch_beatmapsets(self, beatmapset_ids: Iterable[int]) -> List[Beatmapset]:
        return [self.beatmapsets[i] for i in beatmapset_ids if i in self.beatmapsets]

    async def fetch_group_members(self, group: OsuGroup) -> List[GroupMember]:
        return list(self.members.get(group, []))


class RecordingSink:
    def __init__(self) -> None:
        self.sent: List[tuple[int, str, tuple[Control, ...]]] = []

    async def send(self, channel_id: int, content: str, controls: Sequence[Control] = ()) -> SentMessage:
        self.sent.append((channel_id, content, tuple(controls)))
        return SentMessage(channel_id=channel_id, message_id=len(self.sent))

    async def remove_controls(self, message: SentMessage) -> None:
        pass

    async def delete_message(self, message: SentMessage) -> None:
        pass


class PlainFormatter:
    def beatmapset(self, beatmapset: Beatmapset, mentions: Sequence[int] = ()) -> str:
        return f"{beatmapset.id} {beatmapset.status.label} {list(mentions)}"

    def member_added(self, member: GroupMember, group: OsuGroup) -> str:
        return f"added {member.username} to {group.value}"

    def member_removed(self, member: GroupMember, group: OsuGroup) -> str:
        return f"removed {member.username} from {group.value}"

    def member_updated(self, member: GroupMember, update: GamemodeUpdate) -> str:
        added = sorted(mode.value for mode in update.added)
        removed = sorted(mode.value for mode in update.removed)
        return f"updated {member.username} +{added} -{removed}"

    def subscribed_list(self, beatmapsets: Sequence[Beatmapset]) -> str:
        return ""

    def owned(self, owner_id: int, content: str) -> str:
        return content


def _beatmapset(beatmapset_id: int, status: BeatmapStatus = BeatmapStatus.QUALIFIED) -> Beatmapset:
    return Beatmapset(
        id=beatmapset_id,
        title="title",
        artist="artist",
        mapper="mapper",
        status=status,
        beatmaps=(Beatmap(id=beatmapset_id, star_rating=5.0, mode=Gamemode.OSU, bpm=200.0, status=status),),
    )


def _member(user_id: int, username: str, modes: Sequence[Gamemode]) -> GroupMember:
    return GroupMember(
        id=user_id,
        username=username,
        avatar_url="",
        member_of=((BN, frozenset(modes)),),
    )


class World:
    def __init__(self, tmp_path, clock: Clock) -> None:
        self.storage = SQLiteStorage(str(tmp_path / "feeds.db"))
        self.storage.init_db()
        self.storage.add_channel(CHANNEL, ChannelKind.MAPFEED)
        self.storage.add_channel(CHANNEL, ChannelKind.GROUPS)
        self.source = FakeSource()
        self.sink = RecordingSink()
        channels = {
            kind: MembershipCache(kind.value, lambda kind=kind: self.storage.list_channels(kind))
            for kind in ChannelKind
        }
        self.dispatcher = NotificationDispatcher(
            self.sink, PlainFormatter(), self.storage, channels, clock, DispatchConfig()
        )
        self.mapfeed = FeedLoop(
            MapfeedFeed(self.source, self.storage, self.dispatcher),
            clock,
            FeedConfig(name="mapfeed", interval=900, backoff=180),
        )
        self.groups = FeedLoop(
            GroupFeed(self.source, self.storage, self.dispatcher, groups=(BN,)),
            clock,
            FeedConfig(name="groups", interval=14400, backoff=60),
        )

    def contents(self) -> List[str]:
        return [content for _, content, _ in self.sink.sent]


def test_mapfeed_populates_silently_then_announces_changes(tmp_path, clock) -> None:
    world = World(tmp_path, clock)
    source = world.source

    async def scenario() -> None:
        source.qualified = [1, 2]
        source.beatmapsets = {1: _beatmapset(1), 2: _beatmapset(2)}
        assert await world.mapfeed.run_once()
        assert world.storage.list_beatmapset_ids() == [1, 2]
        assert world.sink.sent == []

        world.storage.add_subscription(7, 1)
        source.qualified = [2, 3]
        source.beatmapsets = {1: _beatmapset(1, BeatmapStatus.RANKED), 3: _beatmapset(3)}
        assert await world.mapfeed.run_once()
        await world.dispatcher.close()

    asyncio.run(scenario())

    assert world.storage.list_beatmapset_ids() == [2, 3]
    assert world.storage.list_subscribers(1) == []
    assert world.contents() == ["3 Qualified []", "1 Ranked [7]"]
    (_, _, new_controls), (_, _, removed_controls) = world.sink.sent
    assert [control.custom_id for control in new_controls] == ["3.subscribe", "3.unsubscribe"]
    assert removed_controls == ()


def test_mapfeed_retries_unresolved_ids_next_cycle(tmp_path, clock) -> None:
    world = World(tmp_path, clock)
    source = world.source

    async def scenario() -> None:
        source.qualified = [1]
        source.beatmapsets = {1: _beatmapset(1)}
        assert await world.mapfeed.run_once()

        source.qualified = [1, 4]
        assert await world.mapfeed.run_once()
        assert world.storage.list_beatmapset_ids() == [1]

        source.beatmapsets[4] = _beatmapset(4)
        assert await world.mapfeed.run_once()
        await world.dispatcher.close()

    asyncio.run(scenario())

    assert world.storage.list_beatmapset_ids() == [1, 4]
    assert world.contents() == ["4 Qualified []"]


def test_mapfeed_announces_after_store_empties_at_runtime(tmp_path, clock) -> None:
    world = World(tmp_path, clock)
    source = world.source

    async def scenario() -> None:
        source.qualified = [1]
        source.beatmapsets = {1: _beatmapset(1)}
        assert await world.mapfeed.run_once()

        source.qualified = []
        source.beatmapsets = {1: _beatmapset(1, BeatmapStatus.RANKED)}
        assert await world.mapfeed.run_once()
        assert world.storage.list_beatmapset_ids() == []

        source.qualified = [5]
        source.beatmapsets = {5: _beatmapset(5)}
        assert await world.mapfeed.run_once()
        await world.dispatcher.close()

    asyncio.run(scenario())

    assert world.storage.list_beatmapset_ids() == [5]
    assert world.contents() == ["1 Ranked []", "5 Qualified []"]


def test_mapfeed_source_failure_leaves_store_untouched(tmp_path, clock) -> None:
    world = World(tmp_path, clock)
    world.source.qualified = [1]
    world.source.beatmapsets = {1: _beatmapset(1)}

    async def scenario() -> None:
        assert await world.mapfeed.run_once()
        world.source.down = True
        assert not await world.mapfeed.run_once()

    asyncio.run(scenario())

    assert world.mapfeed.state is FeedState.BACKOFF
    assert world.storage.list_beatmapset_ids() == [1]
    assert world.sink.sent == []


def test_group_feed_announces_joins_leaves_and_gamemode_changes(tmp_path, clock) -> None:
    world = World(tmp_path, clock)
    members = world.source.members

    async def scenario() -> None:
        members[BN] = [_member(1, "alice", [Gamemode.OSU])]
        assert await world.groups.run_once()
        assert world.sink.sent == []

        members[BN] = [
            _member(1, "alice2", [Gamemode.OSU, Gamemode.TAIKO]),
            _member(2, "bob", [Gamemode.MANIA]),
        ]
        assert await world.groups.run_once()

        members[BN] = [_member(2, "bob", [Gamemode.MANIA])]
        assert await world.groups.run_once()

    asyncio.run(scenario())

    assert world.contents() == [
        "added bob to bng",
        "updated alice2 +['taiko'] -[]",
        "removed alice2 from bng",
    ]
    (stored,) = world.storage.list_group_members(BN)
    assert stored.id == 2
    assert stored.disciplines_for(BN) == frozenset({Gamemode.MANIA})
