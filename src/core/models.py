"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the osu! wire format, the database schema or the chat platform.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


class BeatmapStatus(Enum):
    """Ranked status of a beatmapset, keyed by the osu! API integer value."""

    RANKED = 1
    QUALIFIED = 3
    LOVED = 4
    PENDING = 0
    WIP = -1
    GRAVEYARD = -2

    @classmethod
    def from_wire(cls, value: int) -> "BeatmapStatus":
        try:
            return cls(int(value))
        except ValueError:
            # Approved (2) and anything newer are treated as qualified.
            return cls.QUALIFIED

    @property
    def label(self) -> str:
        if self in (BeatmapStatus.PENDING, BeatmapStatus.WIP, BeatmapStatus.GRAVEYARD):
            return "Disqualified"
        return self.name.capitalize()


class Gamemode(Enum):
    """Discipline tag shared by beatmaps and group memberships."""

    OSU = "osu"
    TAIKO = "taiko"
    FRUITS = "fruits"
    MANIA = "mania"

    @property
    def label(self) -> str:
        return {
            Gamemode.OSU: "osu!Standard",
            Gamemode.TAIKO: "osu!Taiko",
            Gamemode.FRUITS: "osu!Catch",
            Gamemode.MANIA: "osu!Mania",
        }[self]


class OsuGroup(Enum):
    """osu! user groups, keyed by their API identifier."""

    BEATMAP_NOMINATOR = "bng"
    PROBATIONARY_BEATMAP_NOMINATOR = "bng_limited"
    NOMINATION_ASSESSMENT_TEAM = "nat"
    TOURNAMENT_COMMITTEE = "tc"
    GLOBAL_MODERATION_TEAM = "gmt"
    DEVELOPER = "dev"
    FEATURED_ARTIST = "featured_artist"
    BEATMAP_SPOTLIGHT_CURATOR = "bsc"
    PROJECT_LOVED = "loved"
    TECHNICAL_SUPPORT_TEAM = "support"
    PPY = "ppy"
    BOT = "bot"
    ALUMNI = "alumni"

    @property
    def group_id(self) -> int:
        """Numeric id used by the osu! website group pages."""

        return _GROUP_IDS[self]

    @property
    def label(self) -> str:
        return _GROUP_LABELS[self]


_GROUP_IDS = {
    OsuGroup.BEATMAP_NOMINATOR: 28,
    OsuGroup.PROBATIONARY_BEATMAP_NOMINATOR: 32,
    OsuGroup.NOMINATION_ASSESSMENT_TEAM: 7,
    OsuGroup.TOURNAMENT_COMMITTEE: 50,
    OsuGroup.GLOBAL_MODERATION_TEAM: 4,
    OsuGroup.DEVELOPER: 11,
    OsuGroup.FEATURED_ARTIST: 35,
    OsuGroup.BEATMAP_SPOTLIGHT_CURATOR: 48,
    OsuGroup.PROJECT_LOVED: 31,
    OsuGroup.TECHNICAL_SUPPORT_TEAM: 22,
    OsuGroup.PPY: 33,
    OsuGroup.BOT: 29,
    OsuGroup.ALUMNI: 16,
}

_GROUP_LABELS = {
    OsuGroup.BEATMAP_NOMINATOR: "Beatmap Nominators",
    OsuGroup.PROBATIONARY_BEATMAP_NOMINATOR: "Probationary Beatmap Nominators",
    OsuGroup.NOMINATION_ASSESSMENT_TEAM: "Nomination Assessment Team",
    OsuGroup.TOURNAMENT_COMMITTEE: "Tournament Committee",
    OsuGroup.GLOBAL_MODERATION_TEAM: "Global Moderation Team",
    OsuGroup.DEVELOPER: "Developers",
    OsuGroup.FEATURED_ARTIST: "Featured Artists",
    OsuGroup.BEATMAP_SPOTLIGHT_CURATOR: "Beatmap Spotlight Curators",
    OsuGroup.PROJECT_LOVED: "Project Loved",
    OsuGroup.TECHNICAL_SUPPORT_TEAM: "Technical Support Team",
    OsuGroup.PPY: "ppy",
    OsuGroup.BOT: "Bot",
    OsuGroup.ALUMNI: "Alumni",
}

TRACKED_GROUPS: Tuple[OsuGroup, ...] = (
    OsuGroup.BEATMAP_NOMINATOR,
    OsuGroup.PROBATIONARY_BEATMAP_NOMINATOR,
    OsuGroup.NOMINATION_ASSESSMENT_TEAM,
    OsuGroup.GLOBAL_MODERATION_TEAM,
    OsuGroup.DEVELOPER,
    OsuGroup.FEATURED_ARTIST,
    OsuGroup.BEATMAP_SPOTLIGHT_CURATOR,
    OsuGroup.PROJECT_LOVED,
)


class ChannelKind(Enum):
    """Feed a chat channel can subscribe to."""

    MAPFEED = "mapfeed"
    GROUPS = "groups"


class SubscriptionMode(Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class UserAdditionStatus(Enum):
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"


class UserDeletionStatus(Enum):
    REMOVED = "removed"
    DOES_NOT_EXIST = "does_not_exist"


@dataclass(frozen=True)
class Beatmap:
    """A single difficulty inside a beatmapset."""

    id: int
    star_rating: float
    mode: Gamemode
    bpm: float
    status: BeatmapStatus


@dataclass(frozen=True)
class Beatmapset:
    """Tracked item: a beatmapset as returned by the osu! API."""

    id: int
    title: str
    artist: str
    mapper: str
    status: BeatmapStatus
    beatmaps: Tuple[Beatmap, ...] = ()
    nominator_ids: Tuple[int, ...] = ()
    ranked_date: Optional[int] = None
    submitted_date: Optional[int] = None


@dataclass(frozen=True)
class GroupMember:
    """A member of one or more osu! groups.

    ``member_of`` pairs each group with the gamemodes the member covers in it.
    Records loaded from the store only carry the group they were loaded for.
    """

    id: int
    username: str
    avatar_url: str
    member_of: Tuple[Tuple[OsuGroup, FrozenSet[Gamemode]], ...] = ()

    def disciplines_for(self, group: OsuGroup) -> FrozenSet[Gamemode]:
        """Return the member's gamemodes in ``group`` (empty when absent)."""

        for member_group, modes in self.member_of:
            if member_group is group:
                return modes
        return frozenset()

    def in_group(self, group: OsuGroup) -> bool:
        return any(member_group is group for member_group, _ in self.member_of)


@dataclass(frozen=True)
class GamemodeUpdate:
    """Attribute-level change of one member inside one group."""

    group: OsuGroup
    added: FrozenSet[Gamemode] = frozenset()
    removed: FrozenSet[Gamemode] = frozenset()

    def is_empty(self) -> bool:
        return not self.added and not self.removed


@dataclass(frozen=True)
class ProfileUpdate:
    """Display-name and/or avatar change for a stored member."""

    user_id: int
    username: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class IdDiff:
    """Identifier-level difference between a remote and a local snapshot."""

    added: List[int]
    removed: List[int]
    common: List[int]


@dataclass
class GroupDiff:
    """Three-way difference of group members for one group."""

    added: List[GroupMember] = field(default_factory=list)
    removed: List[GroupMember] = field(default_factory=list)
    updated: List[Tuple[GroupMember, GamemodeUpdate]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.added and not self.removed and not self.updated


@dataclass(frozen=True)
class Control:
    """Interactive button attached to a notification."""

    label: str
    custom_id: str
    style: str = "primary"


@dataclass(frozen=True)
class SentMessage:
    """Handle of a message delivered by the notification sink."""

    channel_id: int
    message_id: int
