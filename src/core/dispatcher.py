"""Notification dispatcher.

Fans feed changes out to every subscribed channel and owns the lifecycle of
interactive controls: registration, button handling and expiry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from core.clock import Clock
from core.config import DispatchConfig
from core.errors import MalformedMatchError, MidnightError, RemoteError
from core.membership import MembershipCache
from core.models import (
    Beatmapset,
    BeatmapStatus,
    ChannelKind,
    Control,
    GroupDiff,
    OsuGroup,
    SentMessage,
    SubscriptionMode,
    UserAdditionStatus,
    UserDeletionStatus,
)
from core.ports import FormatterPort, InteractionEvent, NotificationSinkPort, StoragePort

LOGGER = logging.getLogger(__name__)

DELETE_ACTION = "delete"
_ACTIONS = {SubscriptionMode.SUBSCRIBE.value, SubscriptionMode.UNSUBSCRIBE.value, DELETE_ACTION}

EXPIRED_REPLY = "This message has expired."
NOT_OWNER_REPLY = "You are not the owner of this message!"
FAILURE_REPLY = "Something went wrong"

SUBSCRIBE_REPLIES = {
    UserAdditionStatus.ADDED: "Subscribed successfully",
    UserAdditionStatus.ALREADY_EXISTS: "You are already subscribed to this beatmap!",
}
UNSUBSCRIBE_REPLIES = {
    UserDeletionStatus.REMOVED: "Unsubscribed successfully",
    UserDeletionStatus.DOES_NOT_EXIST: "You are not subscribed to this beatmap!",
}


def encode_custom_id(entity_id: int, action: str) -> str:
    return f"{entity_id}.{action}"


def parse_custom_id(custom_id: str) -> Tuple[int, str]:
    """Split ``"<id>.<action>"`` into its parts."""

    entity, sep, action = custom_id.partition(".")
    if not sep or action not in _ACTIONS:
        raise MalformedMatchError(f"Unknown control id: {custom_id!r}")
    try:
        return int(entity), action
    except ValueError as exc:
        raise MalformedMatchError(f"Unknown control id: {custom_id!r}") from exc


def subscription_controls(beatmapset_id: int) -> Tuple[Control, ...]:
    return (
        Control("Subscribe", encode_custom_id(beatmapset_id, SubscriptionMode.SUBSCRIBE.value)),
        Control(
            "Unsubscribe",
            encode_custom_id(beatmapset_id, SubscriptionMode.UNSUBSCRIBE.value),
            style="danger",
        ),
    )


@dataclass(frozen=True)
class PendingControls:
    """Controls still accepting interactions on a delivered message."""

    message: SentMessage
    expires_at: float
    owner_id: Optional[int] = None


class InteractionRegistry:
    """Maps (channel id, message id) to the controls live on that message."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._pending: dict[Tuple[int, int], PendingControls] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def register(
        self,
        message: SentMessage,
        lifetime: float,
        owner_id: Optional[int] = None,
    ) -> PendingControls:
        pending = PendingControls(
            message=message,
            expires_at=self._clock.monotonic() + lifetime,
            owner_id=owner_id,
        )
        self._pending[(message.channel_id, message.message_id)] = pending
        return pending

    def lookup(self, channel_id: int, message_id: int) -> Optional[PendingControls]:
        """Return live controls, or None when unknown or past expiry."""

        pending = self._pending.get((channel_id, message_id))
        if pending is None or self._clock.monotonic() >= pending.expires_at:
            return None
        return pending

    def pop(self, channel_id: int, message_id: int) -> Optional[PendingControls]:
        return self._pending.pop((channel_id, message_id), None)


class NotificationDispatcher:
    """Delivers feed notifications and answers button presses."""

    def __init__(
        self,
        sink: NotificationSinkPort,
        formatter: FormatterPort,
        storage: StoragePort,
        channels: Mapping[ChannelKind, MembershipCache],
        clock: Clock,
        config: DispatchConfig,
    ) -> None:
        self._sink = sink
        self._formatter = formatter
        self._storage = storage
        self._channels = channels
        self._clock = clock
        self._config = config
        self.registry = InteractionRegistry(clock)
        self._expiry_tasks: Set[asyncio.Task] = set()

    async def broadcast(
        self,
        kind: ChannelKind,
        content: str,
        controls: Sequence[Control] = (),
    ) -> List[SentMessage]:
        """Send ``content`` to every channel subscribed to ``kind``."""

        sent: List[SentMessage] = []
        for channel_id in await self._channels[kind].members():
            try:
                message = await self._sink.send(channel_id, content, controls)
            except RemoteError as exc:
                LOGGER.error("Failed to notify channel %s: %s", channel_id, exc)
                continue
            if controls:
                self._track(message)
            sent.append(message)
        return sent

    async def notify_beatmapsets(
        self,
        beatmapsets: Iterable[Beatmapset],
        mentions: Optional[Mapping[int, Sequence[int]]] = None,
    ) -> None:
        """Post one message per beatmapset, with controls while it is qualified."""

        mentions = mentions or {}
        for beatmapset in beatmapsets:
            content = self._formatter.beatmapset(beatmapset, mentions.get(beatmapset.id, ()))
            controls: Sequence[Control] = ()
            if beatmapset.status is BeatmapStatus.QUALIFIED:
                controls = subscription_controls(beatmapset.id)
            await self.broadcast(ChannelKind.MAPFEED, content, controls)

    async def notify_group_diff(self, group: OsuGroup, diff: GroupDiff) -> None:
        for member in diff.added:
            await self.broadcast(ChannelKind.GROUPS, self._formatter.member_added(member, group))
        for member in diff.removed:
            await self.broadcast(ChannelKind.GROUPS, self._formatter.member_removed(member, group))
        for member, update in diff.updated:
            await self.broadcast(ChannelKind.GROUPS, self._formatter.member_updated(member, update))

    async def send_owned(self, channel_id: int, content: str, owner_id: int) -> SentMessage:
        """Send a message only ``owner_id`` may delete through its control."""

        control = Control("Delete", encode_custom_id(owner_id, DELETE_ACTION), style="danger")
        message = await self._sink.send(
            channel_id, self._formatter.owned(owner_id, content), (control,)
        )
        self._track(message, owner_id=owner_id)
        return message

    def _track(self, message: SentMessage, owner_id: Optional[int] = None) -> None:
        self.registry.register(message, self._config.button_lifetime, owner_id=owner_id)
        task = asyncio.create_task(self._expire(message))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)

    async def _expire(self, message: SentMessage) -> None:
        await self._clock.sleep(self._config.button_lifetime)
        if self.registry.pop(message.channel_id, message.message_id) is None:
            # Already deleted through its own control.
            return
        try:
            await self._sink.remove_controls(message)
        except RemoteError as exc:
            LOGGER.warning(
                "Could not remove controls from %s/%s: %s",
                message.channel_id,
                message.message_id,
                exc,
            )

    async def handle_interaction(self, event: InteractionEvent) -> None:
        """Answer a button press. Every event gets exactly one answer."""

        pending = self.registry.lookup(event.channel_id, event.message_id)
        if pending is None:
            await event.respond(EXPIRED_REPLY)
            return
        try:
            entity_id, action = parse_custom_id(event.custom_id)
        except MalformedMatchError as exc:
            LOGGER.warning("Ignoring interaction: %s", exc)
            await event.acknowledge()
            return

        if action == DELETE_ACTION:
            await self._handle_delete(event, pending)
            return

        try:
            if action == SubscriptionMode.SUBSCRIBE.value:
                added = await asyncio.to_thread(
                    self._storage.add_subscription, event.user_id, entity_id
                )
                reply = SUBSCRIBE_REPLIES[added]
            else:
                removed = await asyncio.to_thread(
                    self._storage.remove_subscription, event.user_id, entity_id
                )
                reply = UNSUBSCRIBE_REPLIES[removed]
        except MidnightError:
            LOGGER.exception(
                "Failed to %s user %s for beatmapset %s", action, event.user_id, entity_id
            )
            reply = FAILURE_REPLY
        await event.respond(reply)

    async def _handle_delete(self, event: InteractionEvent, pending: PendingControls) -> None:
        if event.user_id != pending.owner_id:
            await event.respond(NOT_OWNER_REPLY)
            return
        self.registry.pop(event.channel_id, event.message_id)
        await event.acknowledge()
        try:
            await self._sink.delete_message(pending.message)
        except RemoteError as exc:
            LOGGER.warning("Could not delete owned message: %s", exc)

    async def close(self) -> None:
        """Cancel pending expiry timers."""

        for task in list(self._expiry_tasks):
            task.cancel()
        if self._expiry_tasks:
            await asyncio.gather(*self._expiry_tasks, return_exceptions=True)
        self._expiry_tasks.clear()
