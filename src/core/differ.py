"""Snapshot differ.

Pure functions comparing a remote snapshot with the locally stored one.
Results are sorted by id so the same inputs always give the same output.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping

from core.models import GamemodeUpdate, GroupDiff, GroupMember, IdDiff, OsuGroup, ProfileUpdate


def diff_ids(remote_ids: Iterable[int], local_ids: Iterable[int]) -> IdDiff:
    """Split ids into added (remote only), removed (local only) and common."""

    remote = set(remote_ids)
    local = set(local_ids)
    return IdDiff(
        added=sorted(remote - local),
        removed=sorted(local - remote),
        common=sorted(remote & local),
    )


def _by_id(members: Iterable[GroupMember]) -> dict[int, GroupMember]:
    return {member.id: member for member in members}


def diff_members(
    remote: Iterable[GroupMember],
    local: Iterable[GroupMember],
    group: OsuGroup,
) -> GroupDiff:
    """Compute the three-way diff of ``group`` members.

    Only the gamemodes held in ``group`` are compared for members present on
    both sides; a missing group entry counts as an empty gamemode set.
    """

    remote_by_id = _by_id(remote)
    local_by_id = _by_id(local)
    ids = diff_ids(remote_by_id, local_by_id)

    diff = GroupDiff(
        added=[remote_by_id[user_id] for user_id in ids.added],
        removed=[local_by_id[user_id] for user_id in ids.removed],
    )
    for user_id in ids.common:
        member = remote_by_id[user_id]
        remote_modes = member.disciplines_for(group)
        local_modes = local_by_id[user_id].disciplines_for(group)
        update = GamemodeUpdate(
            group=group,
            added=remote_modes - local_modes,
            removed=local_modes - remote_modes,
        )
        if not update.is_empty():
            diff.updated.append((member, update))
    return diff


def profile_updates(
    remote: Iterable[GroupMember],
    local: Iterable[GroupMember],
) -> List[ProfileUpdate]:
    """Return name/avatar changes for members present on both sides."""

    local_by_id: Mapping[int, GroupMember] = _by_id(local)
    updates: List[ProfileUpdate] = []
    for member in sorted(_by_id(remote).values(), key=lambda item: item.id):
        stored = local_by_id.get(member.id)
        if stored is None:
            continue
        username = member.username if member.username != stored.username else None
        avatar_url = member.avatar_url if member.avatar_url != stored.avatar_url else None
        if username is None and avatar_url is None:
            continue
        updates.append(ProfileUpdate(user_id=member.id, username=username, avatar_url=avatar_url))
    return updates
