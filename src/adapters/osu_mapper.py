"""Map osu! API payloads into core models.

Keeps the wire format out of the core: field names, status integers and date
strings are only known here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from core.errors import EntityDecodeError, MalformedPayloadError
from core.models import Beatmap, Beatmapset, BeatmapStatus, Gamemode, GroupMember, OsuGroup

LOGGER = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Convert an RFC 3339 string into unix seconds."""

    if not value:
        return None
    # fromisoformat only accepts the trailing "Z" from Python 3.11 on.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return int(datetime.fromisoformat(value).timestamp())


def _beatmap(payload: dict[str, Any]) -> Beatmap:
    return Beatmap(
        id=int(payload["id"]),
        star_rating=float(payload["difficulty_rating"]),
        mode=Gamemode(payload["mode"]),
        bpm=float(payload.get("bpm") or 0.0),
        status=BeatmapStatus.from_wire(payload.get("ranked", 0)),
    )


def beatmapset_from_api(payload: Any) -> Beatmapset:
    """Decode one ``/beatmapsets/{id}`` response body."""

    try:
        return Beatmapset(
            id=int(payload["id"]),
            title=str(payload["title"]),
            artist=str(payload["artist"]),
            mapper=str(payload["creator"]),
            status=BeatmapStatus.from_wire(payload["ranked"]),
            beatmaps=tuple(_beatmap(item) for item in payload.get("beatmaps") or []),
            nominator_ids=tuple(
                int(item["user_id"]) for item in payload.get("current_nominations") or []
            ),
            ranked_date=parse_timestamp(payload.get("ranked_date")),
            submitted_date=parse_timestamp(payload.get("submitted_date")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise EntityDecodeError(f"Invalid beatmapset payload: {exc!r}") from exc


def search_page_from_api(payload: Any) -> tuple[List[int], Optional[str]]:
    """Return the ids and next cursor of a beatmapset search page."""

    try:
        ids = [int(item["id"]) for item in payload["beatmapsets"]]
    except (KeyError, TypeError, ValueError) as exc:
        raise EntityDecodeError(f"Invalid search page: {exc!r}") from exc
    cursor = payload.get("cursor_string")
    return ids, cursor if cursor else None


def _memberships(groups: Iterable[dict[str, Any]]) -> tuple:
    modes_by_group: dict[OsuGroup, set[Gamemode]] = {}
    for entry in groups:
        try:
            group = OsuGroup(entry["identifier"])
        except ValueError:
            # Groups we do not model (e.g. retired ones) are ignored.
            continue
        modes = modes_by_group.setdefault(group, set())
        for mode in entry.get("playmodes") or []:
            try:
                modes.add(Gamemode(mode))
            except ValueError:
                LOGGER.debug("Ignoring unknown playmode %r in %s", mode, group.value)
    return tuple((group, frozenset(modes)) for group, modes in modes_by_group.items())


def group_members_from_api(payload: Any) -> List[GroupMember]:
    """Decode the ``json-users`` payload scraped from a group page.

    Members that fail to decode are logged and dropped; only a payload that is
    not a list at all is rejected.
    """

    if not isinstance(payload, list):
        raise MalformedPayloadError("Group users payload is not a list")
    members = []
    for item in payload:
        try:
            members.append(
                GroupMember(
                    id=int(item["id"]),
                    username=str(item["username"]),
                    avatar_url=str(item.get("avatar_url") or ""),
                    member_of=_memberships(item.get("groups") or []),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Dropping undecodable group member: %r", exc)
    return members
