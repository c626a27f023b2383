"""Telegram command and button handlers.

Commands are registered on the Telethon client and delegate to the core
subscription service and dispatcher. Every handler logs and answers with a
generic failure message instead of letting errors escape into Telethon.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from telethon import TelegramClient, events
from telethon.errors import RPCError

from adapters.telegram_sink import TelegramInteraction
from core.dispatcher import FAILURE_REPLY, SUBSCRIBE_REPLIES, UNSUBSCRIBE_REPLIES
from core.errors import MalformedMatchError, NoMatchError, StoreUnavailableError, UnknownEntityError
from core.models import ChannelKind, SubscriptionMode, UserAdditionStatus

if TYPE_CHECKING:
    from context import AppContext

LOGGER = logging.getLogger(__name__)

HELP_TEXT = "\n".join(
    [
        "**midnight** follows qualified osu! beatmaps and osu! group changes.",
        "",
        "/subscribe <beatmapset link> - get pinged when the beatmap leaves qualified",
        "/unsubscribe <beatmapset link> - stop getting pinged",
        "/subscribed - list your subscriptions",
        "/mapfeed on|off - post qualified beatmaps in this chat",
        "/groups on|off - post osu! group changes in this chat",
        "/status - show feed status",
    ]
)
LINK_HINT = "Please send a beatmapset link like https://osu.ppy.sh/beatmapsets/123"
ADMIN_ONLY_REPLY = "Only chat admins can change the feeds of this chat."


def command_pattern(name: str) -> re.Pattern:
    """Match ``/name``, ``/name@bot`` and an optional argument."""

    return re.compile(rf"^/{name}(?:@\w+)?(?:\s+(?P<arg>.+?))?\s*$", re.IGNORECASE | re.DOTALL)


def parse_toggle(arg: Optional[str]) -> Optional[bool]:
    value = (arg or "").strip().lower()
    if value in {"on", "enable", "yes"}:
        return True
    if value in {"off", "disable", "no"}:
        return False
    return None


def format_duration(seconds: float) -> str:
    seconds = int(max(seconds, 0))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = [f"{value}{unit}" for value, unit in ((days, "d"), (hours, "h"), (minutes, "m")) if value]
    parts.append(f"{seconds}s")
    return " ".join(parts)


async def status_text(ctx: "AppContext") -> str:
    now = ctx.clock.monotonic()
    lines = ["**Status**", f"Uptime: {format_duration(now - ctx.started_at)}", ""]
    for name, loop in ctx.feeds.items():
        last = "never" if loop.last_success is None else f"{format_duration(now - loop.last_success)} ago"
        lines.append(
            f"{name}: {loop.state.value}, {loop.cycles} cycles, {loop.failures} failed, last success {last}"
        )
    lines.append("")
    for kind, cache in ctx.channels.items():
        lines.append(f"{kind.value} channels: {len(await cache.members())}")
    return "\n".join(lines)


async def _is_admin(client: TelegramClient, event) -> bool:
    if event.is_private:
        return True
    try:
        permissions = await client.get_permissions(event.chat_id, event.sender_id)
    except (RPCError, ValueError) as exc:
        LOGGER.warning("Could not read permissions in %s: %s", event.chat_id, exc)
        return False
    return bool(permissions.is_admin)


async def handle_subscription(ctx: "AppContext", event, mode: SubscriptionMode) -> None:
    arg = event.pattern_match.group("arg")
    if not arg:
        await event.reply(LINK_HINT)
        return
    try:
        status = await ctx.subscriptions.subscribe_link(event.sender_id, arg, mode)
    except NoMatchError:
        await event.reply(LINK_HINT)
        return
    except MalformedMatchError:
        await event.reply("That beatmapset link is not valid.")
        return
    except UnknownEntityError:
        await event.reply("That beatmap is not qualified, so it cannot be subscribed to.")
        return
    except StoreUnavailableError:
        LOGGER.exception("Failed to %s user %s", mode.value, event.sender_id)
        await event.reply(FAILURE_REPLY)
        return
    if isinstance(status, UserAdditionStatus):
        await event.reply(SUBSCRIBE_REPLIES[status])
    else:
        await event.reply(UNSUBSCRIBE_REPLIES[status])


async def handle_subscribed(ctx: "AppContext", event) -> None:
    try:
        beatmapsets = await ctx.subscriptions.subscribed(event.sender_id)
    except StoreUnavailableError:
        LOGGER.exception("Failed to list subscriptions of %s", event.sender_id)
        await event.reply(FAILURE_REPLY)
        return
    await ctx.dispatcher.send_owned(
        event.chat_id, ctx.formatter.subscribed_list(beatmapsets), event.sender_id
    )


async def handle_toggle(ctx: "AppContext", event, kind: ChannelKind) -> None:
    enabled = parse_toggle(event.pattern_match.group("arg"))
    if enabled is None:
        await event.reply(f"Usage: /{kind.value} on|off")
        return
    if not await _is_admin(ctx.client, event):
        await event.reply(ADMIN_ONLY_REPLY)
        return
    try:
        changed = await ctx.subscriptions.set_channel(event.chat_id, kind, enabled)
    except StoreUnavailableError:
        LOGGER.exception("Failed to toggle %s for %s", kind.value, event.chat_id)
        await event.reply(FAILURE_REPLY)
        return
    state = "enabled" if enabled else "disabled"
    if changed:
        await event.reply(f"The {kind.value} feed is now {state} in this chat.")
    else:
        await event.reply(f"The {kind.value} feed was already {state} in this chat.")


def _guarded(name: str, handler: Callable[..., Awaitable[None]]):
    async def _wrapper(event) -> None:
        try:
            await handler(event)
        except Exception:
            # Handler boundary: never let an error escape into Telethon.
            LOGGER.exception("Error while handling %s", name)
            try:
                await event.reply(FAILURE_REPLY)
            except RPCError:
                LOGGER.warning("Could not report failure of %s", name)

    return _wrapper


def register_handlers(ctx: "AppContext") -> None:
    """Attach every command and the button handler to the client."""

    client = ctx.client
    commands = {
        "start": lambda event: event.reply(HELP_TEXT),
        "help": lambda event: event.reply(HELP_TEXT),
        "subscribe": lambda event: handle_subscription(ctx, event, SubscriptionMode.SUBSCRIBE),
        "unsubscribe": lambda event: handle_subscription(ctx, event, SubscriptionMode.UNSUBSCRIBE),
        "subscribed": lambda event: handle_subscribed(ctx, event),
        "mapfeed": lambda event: handle_toggle(ctx, event, ChannelKind.MAPFEED),
        "groups": lambda event: handle_toggle(ctx, event, ChannelKind.GROUPS),
        "status": lambda event: _reply_status(ctx, event),
    }
    for name, handler in commands.items():
        client.add_event_handler(
            _guarded(name, handler),
            events.NewMessage(pattern=command_pattern(name)),
        )

    async def on_button(event: events.CallbackQuery.Event) -> None:
        try:
            await ctx.dispatcher.handle_interaction(TelegramInteraction(event))
        except Exception:
            LOGGER.exception("Interaction failure")

    client.add_event_handler(on_button, events.CallbackQuery())
    LOGGER.info("Registered %s commands", len(commands))


async def _reply_status(ctx: "AppContext", event) -> None:
    await event.reply(await status_text(ctx))
