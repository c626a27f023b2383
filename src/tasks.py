"""Background task wiring.

Starts the osu! token refresher and both feed loops exactly once. Losing the
token refresher is fatal: the bot disconnects so the process exits and can be
restarted by its supervisor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from context import AppContext

LOGGER = logging.getLogger(__name__)


def _on_token_task_done(ctx: "AppContext", task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    LOGGER.critical("osu! token refresh failed, shutting down", exc_info=exc)
    ctx.tasks.append(asyncio.ensure_future(ctx.client.disconnect()))


def _on_feed_task_done(name: str, task: asyncio.Task) -> None:
    # Feed loops only exit when stopped; anything else is a bug worth logging.
    if not task.cancelled() and task.exception() is not None:
        LOGGER.error("%s feed task died", name, exc_info=task.exception())


def start_background_tasks(ctx: "AppContext") -> List[asyncio.Task]:
    """Start long-lived tasks. Calling it again returns the running tasks."""

    if ctx.tasks:
        LOGGER.warning("Background tasks already running")
        return ctx.tasks

    token_task = asyncio.create_task(ctx.tokens.run_refresh_loop(), name="osu-token-refresh")
    token_task.add_done_callback(lambda task: _on_token_task_done(ctx, task))
    ctx.tasks.append(token_task)

    for name, loop in ctx.feeds.items():
        task = asyncio.create_task(loop.run(), name=f"{name}-feed")
        task.add_done_callback(lambda task, name=name: _on_feed_task_done(name, task))
        ctx.tasks.append(task)

    LOGGER.info("Started %s background tasks", len(ctx.tasks))
    return ctx.tasks
