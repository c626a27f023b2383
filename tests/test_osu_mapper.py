from __future__ import annotations

import pytest

from adapters.osu_mapper import (
    beatmapset_from_api,
    group_members_from_api,
    parse_timestamp,
    search_page_from_api,
)
from core.errors import EntityDecodeError, MalformedPayloadError
from core.models import BeatmapStatus, Gamemode, OsuGroup


def _payload(**overrides) -> dict:
    payload = {
        "id": 1234,
        "title": "Kimi no Shiranai Monogatari",
        "artist": "supercell",
        "creator": "mapper",
        "ranked": 3,
        "ranked_date": None,
        "submitted_date": "2024-01-01T00:00:00Z",
        "current_nominations": [{"user_id": 1}, {"user_id": 2}],
        "beatmaps": [
            {"id": 1, "difficulty_rating": 2.5, "mode": "osu", "bpm": 180, "ranked": 3},
            {"id": 2, "difficulty_rating": 5.25, "mode": "taiko", "bpm": 180.5, "ranked": 3},
        ],
    }
    payload.update(overrides)
    return payload


def test_parse_timestamp_accepts_trailing_z() -> None:
    assert parse_timestamp("1970-01-01T00:01:00Z") == 60
    assert parse_timestamp("1970-01-01T00:01:00+00:00") == 60
    assert parse_timestamp(None) is None


def test_beatmapset_from_api() -> None:
    beatmapset = beatmapset_from_api(_payload())

    assert beatmapset.id == 1234
    assert beatmapset.mapper == "mapper"
    assert beatmapset.status is BeatmapStatus.QUALIFIED
    assert beatmapset.nominator_ids == (1, 2)
    assert [b.mode for b in beatmapset.beatmaps] == [Gamemode.OSU, Gamemode.TAIKO]
    assert beatmapset.ranked_date is None
    assert beatmapset.submitted_date == 1704067200


def test_unknown_status_decodes_as_qualified() -> None:
    assert beatmapset_from_api(_payload(ranked=2)).status is BeatmapStatus.QUALIFIED
    assert beatmapset_from_api(_payload(ranked=-2)).status is BeatmapStatus.GRAVEYARD
    assert BeatmapStatus.GRAVEYARD.label == "Disqualified"
    assert BeatmapStatus.LOVED.label == "Loved"


def test_bad_beatmapset_raises_decode_error() -> None:
    payload = _payload()
    del payload["title"]
    with pytest.raises(EntityDecodeError):
        beatmapset_from_api(payload)
    with pytest.raises(EntityDecodeError):
        beatmapset_from_api(_payload(beatmaps=[{"id": 1, "difficulty_rating": 1, "mode": "std"}]))


def test_search_page_cursor() -> None:
    assert search_page_from_api({"beatmapsets": [{"id": 3}, {"id": 4}], "cursor_string": "abc"}) == ([3, 4], "abc")
    assert search_page_from_api({"beatmapsets": [], "cursor_string": None}) == ([], None)


def test_group_members_skip_unknown_groups() -> None:
    members = group_members_from_api(
        [
            {
                "id": 10,
                "username": "nominator",
                "avatar_url": "https://a.ppy.sh/10",
                "groups": [
                    {"identifier": "bng", "playmodes": ["osu", "mania"]},
                    {"identifier": "retired_group", "playmodes": None},
                    {"identifier": "nat", "playmodes": None},
                ],
            }
        ]
    )

    (member,) = members
    assert member.disciplines_for(OsuGroup.BEATMAP_NOMINATOR) == frozenset({Gamemode.OSU, Gamemode.MANIA})
    assert member.in_group(OsuGroup.NOMINATION_ASSESSMENT_TEAM)
    assert member.disciplines_for(OsuGroup.NOMINATION_ASSESSMENT_TEAM) == frozenset()
    assert not member.in_group(OsuGroup.DEVELOPER)


def test_group_members_wrong_shape() -> None:
    with pytest.raises(MalformedPayloadError):
        group_members_from_api({"users": []})


def test_bad_group_member_is_dropped_not_the_page() -> None:
    members = group_members_from_api(
        [
            {"id": 1, "username": "good", "groups": [{"identifier": "bng", "playmodes": ["osu"]}]},
            {"username": "no id", "groups": []},
            {"id": "x", "username": "bad id", "groups": []},
            {"id": 4, "username": "broken groups", "groups": [7]},
        ]
    )

    assert [member.id for member in members] == [1]
    assert members[0].disciplines_for(OsuGroup.BEATMAP_NOMINATOR) == frozenset({Gamemode.OSU})


def test_unknown_playmode_is_ignored() -> None:
    (member,) = group_members_from_api(
        [
            {
                "id": 2,
                "username": "tapper",
                "groups": [{"identifier": "bng", "playmodes": ["osu", "tapping"]}],
            }
        ]
    )

    assert member.disciplines_for(OsuGroup.BEATMAP_NOMINATOR) == frozenset({Gamemode.OSU})
