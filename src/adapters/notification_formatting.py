"""Shared notification formatting helpers.

Keeping formatting here prevents drift between the feeds and the commands and
keeps messages consistent. Output is Telegram Markdown (parse_mode="md").
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Sequence

from core.models import Beatmap, Beatmapset, GamemodeUpdate, GroupMember, OsuGroup

OSU_URL = "https://osu.ppy.sh"
COVER_URL = "https://assets.ppy.sh/beatmaps/{id}/covers/card.jpg"
SUBSCRIBED_TITLE = "Beatmaps you are subscribed to"
SUBSCRIBED_FOOTER = "Sorted closest to being ranked to furthest"
DIVIDER = "──────────────"


def escape_md(value: str) -> str:
    for ch in r"*_[`":
        value = value.replace(ch, f"\\{ch}")
    return value


def format_timestamp(unix: Optional[int]) -> str:
    if unix is None:
        return "unknown"
    return datetime.fromtimestamp(unix, tz=timezone.utc).strftime("%H:%M:%S %d-%m-%Y UTC")


def mention(user_id: int, label: Optional[str] = None) -> str:
    return f"[{escape_md(label or str(user_id))}](tg://user?id={user_id})"


def star_summary(beatmaps: Sequence[Beatmap]) -> str:
    """Return e.g. ``5.12 ★ • 1 Difficulty`` or ``2.00 - 6.10 ★ • 4 Difficulties``."""

    if not beatmaps:
        return "0 ★ • 0 Difficulties"
    ratings = [beatmap.star_rating for beatmap in beatmaps]
    if len(ratings) == 1:
        return f"{ratings[0]:.2f} ★ • 1 Difficulty"
    return f"{min(ratings):.2f} - {max(ratings):.2f} ★ • {len(ratings)} Difficulties"


def most_common_mode(beatmaps: Sequence[Beatmap]) -> str:
    if not beatmaps:
        return "unknown"
    counts = Counter(beatmap.mode for beatmap in beatmaps)
    # Ties go to the mode of the first difficulty listed.
    mode, _ = counts.most_common(1)[0]
    return mode.label


def format_beatmapset(beatmapset: Beatmapset, mentions: Sequence[int] = ()) -> str:
    """Create the Markdown body announcing a beatmapset."""

    link = f"{OSU_URL}/beatmapsets/{beatmapset.id}"
    status = f"**{beatmapset.status.label}**"
    if beatmapset.ranked_date is not None:
        status = f"{status} ({format_timestamp(beatmapset.ranked_date)})"
    lines = []
    if mentions:
        lines.extend([", ".join(mention(user_id) for user_id in mentions), ""])
    lines.extend(
        [
            f"**[{escape_md(beatmapset.title)}]({link})** | {status}",
            f"Mapped by {escape_md(beatmapset.mapper)} | [{most_common_mode(beatmapset.beatmaps)}]",
            f"Artist: {escape_md(beatmapset.artist)}",
            f"Submitted: {format_timestamp(beatmapset.submitted_date)}",
            "",
            star_summary(beatmapset.beatmaps),
            f"[Cover]({COVER_URL.format(id=beatmapset.id)})",
        ]
    )
    return "\n".join(lines)


def _member_header(member: GroupMember, title: str) -> list[str]:
    return [
        f"**[{escape_md(member.username)}]({OSU_URL}/users/{member.id})**",
        title,
        DIVIDER,
    ]


def format_member_added(member: GroupMember, group: OsuGroup) -> str:
    lines = _member_header(member, f"Added to **{group.label}**")
    modes = sorted(mode.label for mode in member.disciplines_for(group))
    if modes:
        lines.append("```diff\n" + "\n".join(f"+ {mode}" for mode in modes) + "\n```")
    return "\n".join(lines)


def format_member_removed(member: GroupMember, group: OsuGroup) -> str:
    return "\n".join(_member_header(member, f"Removed from **{group.label}**"))


def format_member_updated(member: GroupMember, update: GamemodeUpdate) -> str:
    lines = _member_header(member, f"Updated gamemodes in **{update.group.label}**")
    diff = [f"+ {mode}" for mode in sorted(m.label for m in update.added)]
    diff.extend(f"- {mode}" for mode in sorted(m.label for m in update.removed))
    lines.append("```diff\n" + "\n".join(diff) + "\n```")
    return "\n".join(lines)


def format_subscribed(beatmapsets: Sequence[Beatmapset]) -> str:
    if not beatmapsets:
        return "You are not subscribed to any beatmaps"
    lines = [f"**{SUBSCRIBED_TITLE}**", ""]
    lines.extend(
        f"- [{escape_md(item.title)}]({OSU_URL}/beatmapsets/{item.id})" for item in beatmapsets
    )
    lines.extend(["", f"__{SUBSCRIBED_FOOTER}__"])
    return "\n".join(lines)


class MarkdownFormatter:
    """FormatterPort implementation used by the Telegram sink."""

    def beatmapset(self, beatmapset: Beatmapset, mentions: Sequence[int] = ()) -> str:
        return format_beatmapset(beatmapset, mentions)

    def member_added(self, member: GroupMember, group: OsuGroup) -> str:
        return format_member_added(member, group)

    def member_removed(self, member: GroupMember, group: OsuGroup) -> str:
        return format_member_removed(member, group)

    def member_updated(self, member: GroupMember, update: GamemodeUpdate) -> str:
        return format_member_updated(member, update)

    def subscribed_list(self, beatmapsets: Sequence[Beatmapset]) -> str:
        return format_subscribed(beatmapsets)

    def owned(self, owner_id: int, content: str) -> str:
        return f"{mention(owner_id)}: {content}"
