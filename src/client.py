"""Telegram client factory for midnight.

We explicitly manage the client's lifecycle (start/run_until_disconnected)
so it is obvious when the bot session is created and when it ends.
"""

from __future__ import annotations

import logging

from telethon import TelegramClient

import settings


def build_client() -> TelegramClient:
    """Create a Telethon client for the bot from environment variables.

    Must be called inside the running event loop.
    """

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not settings.API_ID or not settings.API_HASH:
        raise RuntimeError("Missing API_ID or API_HASH in environment")
    if not settings.BOT_TOKEN:
        raise RuntimeError("Missing BOT_TOKEN in environment")

    logging.getLogger(__name__).info("Initializing Telegram bot client")

    return TelegramClient(settings.SESSION_NAME, int(settings.API_ID), settings.API_HASH)
