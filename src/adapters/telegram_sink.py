"""Telegram notification sink.

Delivers notifications through a Telethon bot client and turns callback
queries into core interaction events. Telethon errors are mapped to
RemoteError so the dispatcher can log and move on.
"""

from __future__ import annotations

import logging
from typing import Sequence

from telethon import Button, TelegramClient, events
from telethon.errors import RPCError
from telethon.tl.types import ReplyInlineMarkup

from core.errors import RemoteError
from core.models import Control, SentMessage

LOGGER = logging.getLogger(__name__)


class TelegramSink:
    """NotificationSinkPort implementation backed by a Telethon client."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def send(
        self,
        channel_id: int,
        content: str,
        controls: Sequence[Control] = (),
    ) -> SentMessage:
        buttons = None
        if controls:
            # One row, in the order the controls were given.
            buttons = [
                [
                    Button.inline(control.label, data=control.custom_id.encode("utf-8"))
                    for control in controls
                ]
            ]
        try:
            message = await self._client.send_message(
                channel_id,
                content,
                parse_mode="md",
                buttons=buttons,
                link_preview=False,
            )
        except (RPCError, ValueError) as exc:
            raise RemoteError(f"send to {channel_id} failed: {exc}") from exc
        return SentMessage(channel_id=channel_id, message_id=message.id)

    async def remove_controls(self, message: SentMessage) -> None:
        try:
            # An empty inline markup clears the keyboard; None would leave it untouched.
            await self._client.edit_message(
                message.channel_id,
                message.message_id,
                buttons=ReplyInlineMarkup(rows=[]),
            )
        except (RPCError, ValueError) as exc:
            raise RemoteError(f"removing controls failed: {exc}") from exc

    async def delete_message(self, message: SentMessage) -> None:
        try:
            await self._client.delete_messages(message.channel_id, [message.message_id])
        except (RPCError, ValueError) as exc:
            raise RemoteError(f"delete failed: {exc}") from exc


class TelegramInteraction:
    """Adapts a Telethon CallbackQuery event to the core InteractionEvent."""

    def __init__(self, event: events.CallbackQuery.Event) -> None:
        self._event = event
        self.channel_id: int = event.chat_id
        self.message_id: int = event.message_id
        self.user_id: int = event.sender_id
        self.custom_id: str = (event.data or b"").decode("utf-8", errors="replace")

    async def acknowledge(self) -> None:
        await self._event.answer()

    async def respond(self, content: str, ephemeral: bool = True) -> None:
        # Callback answers are only shown to the user who pressed the button.
        await self._event.answer(content, alert=ephemeral)
