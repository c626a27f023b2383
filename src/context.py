"""Application context.

Everything long-lived is built once here and passed explicitly to commands and
background tasks; nothing is reached through module globals.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import aiohttp
from telethon import TelegramClient

import settings
from adapters.notification_formatting import MarkdownFormatter
from adapters.osu_api import OsuClient
from adapters.osu_auth import TokenManager
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_sink import TelegramSink
from core.clock import AsyncioClock, Clock
from core.config import DispatchConfig, FeedConfig, StoreRetryConfig
from core.dispatcher import NotificationDispatcher
from core.groups import GroupFeed
from core.mapfeed import MapfeedFeed
from core.membership import MembershipCache
from core.models import ChannelKind
from core.reconciler import FeedLoop
from core.subscriptions import SubscriptionService

LOGGER = logging.getLogger(__name__)


@dataclass
class AppContext:
    client: TelegramClient
    session: aiohttp.ClientSession
    clock: Clock
    storage: SQLiteStorage
    tokens: TokenManager
    osu: OsuClient
    sink: TelegramSink
    formatter: MarkdownFormatter
    channels: Dict[ChannelKind, MembershipCache]
    dispatcher: NotificationDispatcher
    subscriptions: SubscriptionService
    feeds: Dict[str, FeedLoop] = field(default_factory=dict)
    tasks: List[asyncio.Task] = field(default_factory=list)
    started_at: float = 0.0

    async def close(self) -> None:
        for loop in self.feeds.values():
            loop.stop()
        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        await self.dispatcher.close()
        await self.session.close()


def _require(name: str, value: str) -> str:
    # Fail fast on missing credentials instead of failing on first request.
    if not value:
        raise RuntimeError(f"Missing {name} in environment")
    return value


def build_context(client: TelegramClient) -> AppContext:
    """Wire adapters and core services. Must run inside the event loop."""

    client_id = _require("OSU_CLIENT_ID", settings.OSU_CLIENT_ID)
    client_secret = _require("OSU_CLIENT_SECRET", settings.OSU_CLIENT_SECRET)

    clock = AsyncioClock()
    storage = SQLiteStorage(
        settings.DB_PATH,
        retry=StoreRetryConfig(attempts=settings.STORE_ATTEMPTS, delay=settings.STORE_RETRY_DELAY),
    )
    storage.init_db()

    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT),
        headers={"User-Agent": settings.USER_AGENT},
    )
    tokens = TokenManager(session, client_id, client_secret, settings.OSU_TOKEN_URL, clock)
    osu = OsuClient(
        session,
        tokens,
        base_url=settings.OSU_BASE_URL,
        web_url=settings.OSU_WEB_URL,
        concurrency=settings.MAX_CONCURRENT_REQUESTS,
    )

    channels = {
        kind: MembershipCache(kind.value, lambda kind=kind: storage.list_channels(kind))
        for kind in ChannelKind
    }
    sink = TelegramSink(client)
    formatter = MarkdownFormatter()
    dispatcher = NotificationDispatcher(
        sink=sink,
        formatter=formatter,
        storage=storage,
        channels=channels,
        clock=clock,
        config=DispatchConfig(button_lifetime=settings.BUTTON_LIFETIME),
    )

    ctx = AppContext(
        client=client,
        session=session,
        clock=clock,
        storage=storage,
        tokens=tokens,
        osu=osu,
        sink=sink,
        formatter=formatter,
        channels=channels,
        dispatcher=dispatcher,
        subscriptions=SubscriptionService(storage, channels),
        started_at=clock.monotonic(),
    )
    mapfeed = FeedConfig("mapfeed", settings.MAPFEED_INTERVAL, settings.MAPFEED_BACKOFF)
    groups = FeedConfig("groups", settings.GROUPS_INTERVAL, settings.GROUPS_BACKOFF)
    ctx.feeds = {
        mapfeed.name: FeedLoop(MapfeedFeed(osu, storage, dispatcher), clock, mapfeed),
        groups.name: FeedLoop(GroupFeed(osu, storage, dispatcher), clock, groups),
    }
    LOGGER.info("Application context ready (db=%s)", settings.DB_PATH)
    return ctx
