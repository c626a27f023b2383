from __future__ import annotations

import sqlite3

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.config import StoreRetryConfig
from core.errors import StoreUnavailableError, UnknownEntityError
from core.models import (
    Beatmap,
    Beatmapset,
    BeatmapStatus,
    ChannelKind,
    Gamemode,
    GamemodeUpdate,
    GroupMember,
    OsuGroup,
    ProfileUpdate,
    UserAdditionStatus,
    UserDeletionStatus,
)

BN = OsuGroup.BEATMAP_NOMINATOR
NAT = OsuGroup.NOMINATION_ASSESSMENT_TEAM


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "midnight.db"))
    storage.init_db()
    return storage


def _beatmapset(beatmapset_id: int, ranked_date=None) -> Beatmapset:
    return Beatmapset(
        id=beatmapset_id,
        title=f"song {beatmapset_id}",
        artist="artist",
        mapper="mapper",
        status=BeatmapStatus.QUALIFIED,
        beatmaps=(
            Beatmap(id=beatmapset_id * 10, star_rating=4.5, mode=Gamemode.OSU, bpm=180.0, status=BeatmapStatus.QUALIFIED),
        ),
        ranked_date=ranked_date,
        submitted_date=1700000000,
    )


def _member(user_id: int, group: OsuGroup, modes=()) -> GroupMember:
    return GroupMember(
        id=user_id,
        username=f"user{user_id}",
        avatar_url=f"https://a.ppy.sh/{user_id}",
        member_of=((group, frozenset(modes)),),
    )


def test_init_db_is_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.init_db()
    assert storage.list_beatmapset_ids() == []


def test_beatmapsets_round_trip(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_beatmapsets([_beatmapset(2), _beatmapset(1, ranked_date=1700100000)])

    assert storage.list_beatmapset_ids() == [1, 2]
    loaded = storage.get_beatmapsets([1])
    assert loaded == [_beatmapset(1, ranked_date=1700100000)]


def test_subscription_statuses_are_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_beatmapsets([_beatmapset(1)])

    assert storage.add_subscription(5, 1) is UserAdditionStatus.ADDED
    assert storage.add_subscription(5, 1) is UserAdditionStatus.ALREADY_EXISTS
    assert storage.list_subscribers(1) == [5]
    assert storage.list_user_subscriptions(5) == [1]
    assert storage.remove_subscription(5, 1) is UserDeletionStatus.REMOVED
    assert storage.remove_subscription(5, 1) is UserDeletionStatus.DOES_NOT_EXIST


def test_subscribing_to_untracked_beatmapset_fails(tmp_path) -> None:
    storage = _storage(tmp_path)
    with pytest.raises(UnknownEntityError):
        storage.add_subscription(5, 404)


def test_deleting_beatmapset_cascades_subscriptions(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_beatmapsets([_beatmapset(1), _beatmapset(2)])
    storage.add_subscription(5, 1)
    storage.add_subscription(5, 2)

    storage.delete_beatmapset(1)

    assert storage.list_subscribers(1) == []
    assert storage.list_user_subscriptions(5) == [2]
    assert storage.get_beatmapsets([1]) == []


def test_reinserting_keeps_subscriptions(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_beatmapsets([_beatmapset(1)])
    storage.add_subscription(5, 1)

    storage.insert_beatmapsets([_beatmapset(1, ranked_date=1700200000)])

    assert storage.list_subscribers(1) == [5]
    assert storage.get_beatmapsets([1])[0].ranked_date == 1700200000


def test_group_members_are_stored_per_group(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_group_members(BN, [_member(1, BN, [Gamemode.OSU, Gamemode.TAIKO])])
    storage.insert_group_members(NAT, [_member(1, NAT, [Gamemode.MANIA])])

    (bn_member,) = storage.list_group_members(BN)
    assert bn_member.member_of == ((BN, frozenset({Gamemode.OSU, Gamemode.TAIKO})),)
    (nat_member,) = storage.list_group_members(NAT)
    assert nat_member.disciplines_for(NAT) == frozenset({Gamemode.MANIA})


def test_update_gamemodes_and_profiles(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_group_members(BN, [_member(1, BN, [Gamemode.OSU, Gamemode.TAIKO])])

    storage.update_gamemodes(
        1,
        GamemodeUpdate(BN, added=frozenset({Gamemode.FRUITS}), removed=frozenset({Gamemode.TAIKO})),
    )
    storage.update_profiles([ProfileUpdate(user_id=1, username="renamed")])

    (member,) = storage.list_group_members(BN)
    assert member.disciplines_for(BN) == frozenset({Gamemode.OSU, Gamemode.FRUITS})
    assert member.username == "renamed"
    assert member.avatar_url == "https://a.ppy.sh/1"


def test_deleting_last_group_forgets_user(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.insert_group_members(BN, [_member(1, BN), _member(2, BN)])
    storage.insert_group_members(NAT, [_member(1, NAT)])

    storage.delete_group_members(BN, [1, 2])

    assert storage.list_group_members(BN) == []
    assert [m.id for m in storage.list_group_members(NAT)] == [1]
    with sqlite3.connect(str(tmp_path / "midnight.db")) as conn:
        ids = [row[0] for row in conn.execute("SELECT id FROM osu_users ORDER BY id")]
    assert ids == [1]


def test_channel_subscriptions(tmp_path) -> None:
    storage = _storage(tmp_path)

    assert storage.add_channel(-100, ChannelKind.MAPFEED) is True
    assert storage.add_channel(-100, ChannelKind.MAPFEED) is False
    assert storage.add_channel(-200, ChannelKind.GROUPS) is True

    assert storage.list_channels(ChannelKind.MAPFEED) == [-100]
    assert storage.list_channels(ChannelKind.GROUPS) == [-200]
    assert storage.remove_channel(-100, ChannelKind.MAPFEED) is True
    assert storage.remove_channel(-100, ChannelKind.MAPFEED) is False


def test_retries_then_gives_up(tmp_path) -> None:
    delays: list[float] = []
    storage = SQLiteStorage(
        str(tmp_path / "missing-dir" / "midnight.db"),
        retry=StoreRetryConfig(attempts=3, delay=0.5),
        sleep=delays.append,
    )

    with pytest.raises(StoreUnavailableError):
        storage.list_beatmapset_ids()

    assert delays == [0.5, 1.0]
