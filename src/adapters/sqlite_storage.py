"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database. Every
operation opens its own connection and is retried a bounded number of times
when SQLite reports the database as busy or locked. The API is synchronous;
async callers run it through ``asyncio.to_thread`` so the retry backoff only
holds a worker thread, never the event loop.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

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

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(
        self,
        db_path: str,
        retry: StoreRetryConfig = StoreRetryConfig(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db_path = db_path
        self._retry = retry
        self._sleep = sleep

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _run(self, name: str, operation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``operation`` in a transaction, retrying on OperationalError."""

        last_error: Optional[Exception] = None
        for attempt in range(1, self._retry.attempts + 1):
            try:
                with self._connect() as conn:
                    return operation(conn)
            except sqlite3.OperationalError as exc:
                last_error = exc
                LOGGER.warning(
                    "Store operation %s failed (attempt %s/%s): %s",
                    name,
                    attempt,
                    self._retry.attempts,
                    exc,
                )
                if attempt < self._retry.attempts:
                    self._sleep(self._retry.delay * attempt)
        raise StoreUnavailableError(f"{name} failed after {self._retry.attempts} attempts") from last_error

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - beatmapsets / beatmaps: the qualified snapshot
        - beatmapset_subscriptions: users waiting for a beatmapset to rank
        - osu_users / osu_user_groups / osu_user_group_gamemodes: group snapshot
        - channel_subscriptions: which chats receive which feed
        """

        def _create(conn: sqlite3.Connection) -> None:
            # beatmapsets holds one row per tracked qualified beatmapset.
            # Dates are unix seconds; ranked_date is unknown until ranking.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS beatmapsets (
                    id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL,
                    artist TEXT NOT NULL,
                    mapper TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    ranked_date INTEGER,
                    submitted_date INTEGER
                )
                """
            )
            # beatmaps are the difficulties of a beatmapset and go with it.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS beatmaps (
                    id INTEGER PRIMARY KEY,
                    beatmapset_id INTEGER NOT NULL
                        REFERENCES beatmapsets(id) ON DELETE CASCADE,
                    star_rating REAL NOT NULL,
                    mode TEXT NOT NULL,
                    bpm REAL NOT NULL,
                    status INTEGER NOT NULL
                )
                """
            )
            # Subscriptions disappear together with their beatmapset.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS beatmapset_subscriptions (
                    user_id INTEGER NOT NULL,
                    beatmapset_id INTEGER NOT NULL
                        REFERENCES beatmapsets(id) ON DELETE CASCADE,
                    PRIMARY KEY (user_id, beatmapset_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS osu_users (
                    id INTEGER PRIMARY KEY,
                    username TEXT NOT NULL,
                    avatar_url TEXT NOT NULL
                )
                """
            )
            # One row per (user, group); member_of is the osu! group identifier.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS osu_user_groups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL
                        REFERENCES osu_users(id) ON DELETE CASCADE,
                    member_of TEXT NOT NULL,
                    UNIQUE (user_id, member_of)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS osu_user_group_gamemodes (
                    user_group_id INTEGER NOT NULL
                        REFERENCES osu_user_groups(id) ON DELETE CASCADE,
                    gamemode TEXT NOT NULL,
                    PRIMARY KEY (user_group_id, gamemode)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS channel_subscriptions (
                    channel_id INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    PRIMARY KEY (channel_id, kind)
                )
                """
            )

        self._run("init_db", _create)

    # Beatmapsets

    def list_beatmapset_ids(self) -> List[int]:
        def _op(conn: sqlite3.Connection) -> List[int]:
            rows = conn.execute("SELECT id FROM beatmapsets ORDER BY id").fetchall()
            return [int(row["id"]) for row in rows]

        return self._run("list_beatmapset_ids", _op)

    def insert_beatmapsets(self, beatmapsets: Iterable[Beatmapset]) -> None:
        """Upsert beatmapsets and replace their difficulties."""

        items = list(beatmapsets)

        def _op(conn: sqlite3.Connection) -> None:
            for item in items:
                # An upsert keeps the row (and its subscriptions) in place.
                conn.execute(
                    """
                    INSERT INTO beatmapsets (id, title, artist, mapper, status, ranked_date, submitted_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        artist = excluded.artist,
                        mapper = excluded.mapper,
                        status = excluded.status,
                        ranked_date = excluded.ranked_date,
                        submitted_date = excluded.submitted_date
                    """,
                    (
                        item.id,
                        item.title,
                        item.artist,
                        item.mapper,
                        item.status.value,
                        item.ranked_date,
                        item.submitted_date,
                    ),
                )
                conn.execute("DELETE FROM beatmaps WHERE beatmapset_id = ?", (item.id,))
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO beatmaps (id, beatmapset_id, star_rating, mode, bpm, status)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (b.id, item.id, b.star_rating, b.mode.value, b.bpm, b.status.value)
                        for b in item.beatmaps
                    ],
                )

        self._run("insert_beatmapsets", _op)

    def delete_beatmapset(self, beatmapset_id: int) -> None:
        self._run(
            "delete_beatmapset",
            lambda conn: conn.execute("DELETE FROM beatmapsets WHERE id = ?", (beatmapset_id,)),
        )

    def get_beatmapsets(self, beatmapset_ids: Iterable[int]) -> List[Beatmapset]:
        ids = list(beatmapset_ids)
        if not ids:
            return []

        def _op(conn: sqlite3.Connection) -> List[Beatmapset]:
            placeholders = ", ".join("?" for _ in ids)
            rows = conn.execute(
                f"SELECT * FROM beatmapsets WHERE id IN ({placeholders}) ORDER BY id", ids
            ).fetchall()
            beatmaps: dict[int, list[Beatmap]] = {}
            for row in conn.execute(
                f"SELECT * FROM beatmaps WHERE beatmapset_id IN ({placeholders}) ORDER BY id", ids
            ):
                beatmaps.setdefault(int(row["beatmapset_id"]), []).append(
                    Beatmap(
                        id=int(row["id"]),
                        star_rating=float(row["star_rating"]),
                        mode=Gamemode(row["mode"]),
                        bpm=float(row["bpm"]),
                        status=BeatmapStatus.from_wire(row["status"]),
                    )
                )
            return [
                Beatmapset(
                    id=int(row["id"]),
                    title=row["title"],
                    artist=row["artist"],
                    mapper=row["mapper"],
                    status=BeatmapStatus.from_wire(row["status"]),
                    beatmaps=tuple(beatmaps.get(int(row["id"]), ())),
                    ranked_date=row["ranked_date"],
                    submitted_date=row["submitted_date"],
                )
                for row in rows
            ]

        return self._run("get_beatmapsets", _op)

    # Beatmapset subscriptions

    def list_subscribers(self, beatmapset_id: int) -> List[int]:
        def _op(conn: sqlite3.Connection) -> List[int]:
            rows = conn.execute(
                "SELECT user_id FROM beatmapset_subscriptions WHERE beatmapset_id = ? ORDER BY user_id",
                (beatmapset_id,),
            ).fetchall()
            return [int(row["user_id"]) for row in rows]

        return self._run("list_subscribers", _op)

    def add_subscription(self, user_id: int, beatmapset_id: int) -> UserAdditionStatus:
        """Subscribe a user; raises UnknownEntityError for untracked beatmapsets."""

        def _op(conn: sqlite3.Connection) -> UserAdditionStatus:
            tracked = conn.execute(
                "SELECT 1 FROM beatmapsets WHERE id = ?", (beatmapset_id,)
            ).fetchone()
            if tracked is None:
                raise UnknownEntityError(f"Beatmapset {beatmapset_id} is not tracked")
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO beatmapset_subscriptions (user_id, beatmapset_id)
                VALUES (?, ?)
                """,
                (user_id, beatmapset_id),
            )
            if cur.rowcount:
                return UserAdditionStatus.ADDED
            return UserAdditionStatus.ALREADY_EXISTS

        return self._run("add_subscription", _op)

    def remove_subscription(self, user_id: int, beatmapset_id: int) -> UserDeletionStatus:
        def _op(conn: sqlite3.Connection) -> UserDeletionStatus:
            cur = conn.execute(
                "DELETE FROM beatmapset_subscriptions WHERE user_id = ? AND beatmapset_id = ?",
                (user_id, beatmapset_id),
            )
            if cur.rowcount:
                return UserDeletionStatus.REMOVED
            return UserDeletionStatus.DOES_NOT_EXIST

        return self._run("remove_subscription", _op)

    def list_user_subscriptions(self, user_id: int) -> List[int]:
        def _op(conn: sqlite3.Connection) -> List[int]:
            rows = conn.execute(
                "SELECT beatmapset_id FROM beatmapset_subscriptions WHERE user_id = ? ORDER BY beatmapset_id",
                (user_id,),
            ).fetchall()
            return [int(row["beatmapset_id"]) for row in rows]

        return self._run("list_user_subscriptions", _op)

    # Group members

    def list_group_members(self, group: OsuGroup) -> List[GroupMember]:
        """Return stored members of ``group``; member_of only carries ``group``."""

        def _op(conn: sqlite3.Connection) -> List[GroupMember]:
            rows = conn.execute(
                """
                SELECT u.id, u.username, u.avatar_url, g.id AS user_group_id
                FROM osu_users u
                JOIN osu_user_groups g ON g.user_id = u.id
                WHERE g.member_of = ?
                ORDER BY u.id
                """,
                (group.value,),
            ).fetchall()
            members = []
            for row in rows:
                modes = conn.execute(
                    "SELECT gamemode FROM osu_user_group_gamemodes WHERE user_group_id = ?",
                    (row["user_group_id"],),
                ).fetchall()
                members.append(
                    GroupMember(
                        id=int(row["id"]),
                        username=row["username"],
                        avatar_url=row["avatar_url"],
                        member_of=((group, frozenset(Gamemode(m["gamemode"]) for m in modes)),),
                    )
                )
            return members

        return self._run("list_group_members", _op)

    def insert_group_members(self, group: OsuGroup, members: Iterable[GroupMember]) -> None:
        items = list(members)

        def _op(conn: sqlite3.Connection) -> None:
            for member in items:
                conn.execute(
                    """
                    INSERT INTO osu_users (id, username, avatar_url) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        username = excluded.username,
                        avatar_url = excluded.avatar_url
                    """,
                    (member.id, member.username, member.avatar_url),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO osu_user_groups (user_id, member_of) VALUES (?, ?)",
                    (member.id, group.value),
                )
                user_group_id = _user_group_id(conn, member.id, group)
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO osu_user_group_gamemodes (user_group_id, gamemode)
                    VALUES (?, ?)
                    """,
                    [(user_group_id, mode.value) for mode in member.disciplines_for(group)],
                )

        self._run("insert_group_members", _op)

    def delete_group_members(self, group: OsuGroup, user_ids: Iterable[int]) -> None:
        ids = list(user_ids)

        def _op(conn: sqlite3.Connection) -> None:
            conn.executemany(
                "DELETE FROM osu_user_groups WHERE user_id = ? AND member_of = ?",
                [(user_id, group.value) for user_id in ids],
            )
            # Users left without any group are no longer tracked.
            conn.execute(
                """
                DELETE FROM osu_users
                WHERE id NOT IN (SELECT DISTINCT user_id FROM osu_user_groups)
                """
            )

        self._run("delete_group_members", _op)

    def update_gamemodes(self, user_id: int, update: GamemodeUpdate) -> None:
        def _op(conn: sqlite3.Connection) -> None:
            user_group_id = _user_group_id(conn, user_id, update.group)
            conn.executemany(
                """
                INSERT OR IGNORE INTO osu_user_group_gamemodes (user_group_id, gamemode)
                VALUES (?, ?)
                """,
                [(user_group_id, mode.value) for mode in update.added],
            )
            conn.executemany(
                "DELETE FROM osu_user_group_gamemodes WHERE user_group_id = ? AND gamemode = ?",
                [(user_group_id, mode.value) for mode in update.removed],
            )

        self._run("update_gamemodes", _op)

    def update_profiles(self, updates: Iterable[ProfileUpdate]) -> None:
        items = list(updates)
        self._run(
            "update_profiles",
            lambda conn: conn.executemany(
                """
                UPDATE osu_users
                SET username = COALESCE(?, username),
                    avatar_url = COALESCE(?, avatar_url)
                WHERE id = ?
                """,
                [(item.username, item.avatar_url, item.user_id) for item in items],
            ),
        )

    # Channel subscriptions

    def list_channels(self, kind: ChannelKind) -> List[int]:
        def _op(conn: sqlite3.Connection) -> List[int]:
            rows = conn.execute(
                "SELECT channel_id FROM channel_subscriptions WHERE kind = ? ORDER BY channel_id",
                (kind.value,),
            ).fetchall()
            return [int(row["channel_id"]) for row in rows]

        return self._run("list_channels", _op)

    def add_channel(self, channel_id: int, kind: ChannelKind) -> bool:
        def _op(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                "INSERT OR IGNORE INTO channel_subscriptions (channel_id, kind) VALUES (?, ?)",
                (channel_id, kind.value),
            )
            return cur.rowcount > 0

        return self._run("add_channel", _op)

    def remove_channel(self, channel_id: int, kind: ChannelKind) -> bool:
        def _op(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                "DELETE FROM channel_subscriptions WHERE channel_id = ? AND kind = ?",
                (channel_id, kind.value),
            )
            return cur.rowcount > 0

        return self._run("remove_channel", _op)


def _user_group_id(conn: sqlite3.Connection, user_id: int, group: OsuGroup) -> int:
    row = conn.execute(
        "SELECT id FROM osu_user_groups WHERE user_id = ? AND member_of = ?",
        (user_id, group.value),
    ).fetchone()
    if row is None:
        raise UnknownEntityError(f"User {user_id} is not stored as a member of {group.value}")
    return int(row["id"])
