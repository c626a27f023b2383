"""Application entry point for the midnight bot."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

import aiohttp
from art import tprint

import settings
from adapters.osu_api import OsuClient
from adapters.osu_auth import TokenManager
from adapters.telegram_commands import register_handlers
from client import build_client
from context import build_context
from core.clock import AsyncioClock
from core.errors import MidnightError
from log_config import configure_logging
from tasks import start_background_tasks

NAME = "MIDNIGHT"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


async def _run_async() -> None:
    logger = logging.getLogger(__name__)

    client = build_client()
    await client.start(bot_token=settings.BOT_TOKEN)
    ctx = build_context(client)
    register_handlers(ctx)
    start_background_tasks(ctx)

    logger.info("Bot connected. Listening for commands...")
    try:
        await client.run_until_disconnected()
    finally:
        logger.info("Shutting down")
        await ctx.close()


def _run() -> None:
    _print_banner()
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    logging.getLogger(__name__).info("Starting midnight")
    asyncio.run(_run_async())


async def _check_async() -> int:
    """Exchange osu! credentials and count qualified beatmapsets."""

    if not settings.OSU_CLIENT_ID or not settings.OSU_CLIENT_SECRET:
        raise RuntimeError("Missing OSU_CLIENT_ID or OSU_CLIENT_SECRET in environment")
    clock = AsyncioClock()
    timeout = aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        tokens = TokenManager(
            session,
            settings.OSU_CLIENT_ID,
            settings.OSU_CLIENT_SECRET,
            settings.OSU_TOKEN_URL,
            clock,
        )
        osu = OsuClient(session, tokens, settings.OSU_BASE_URL, settings.OSU_WEB_URL)
        ids = await osu.fetch_qualified_ids()
    return len(ids)


def _check() -> None:
    _print_banner()
    configure_logging(settings.LOGGING, settings.PROJECT_ROOT)
    try:
        count = asyncio.run(_check_async())
    except MidnightError as exc:
        print(f"osu! API check failed: {exc}")
        raise SystemExit(1) from exc
    print(f"osu! API reachable, {count} qualified beatmapsets.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="midnight")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot")
    subparsers.add_parser("check", help="Verify osu! credentials and API access")

    args = parser.parse_args(argv)
    if args.command == "check":
        _check()
        return
    _run()


if __name__ == "__main__":
    main()
