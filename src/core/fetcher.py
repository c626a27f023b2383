"""Bounded concurrent fetcher.

Resolves many identifiers into entities with at most ``limit`` requests in
flight. Identifiers whose fetch fails are logged and dropped from the result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from core.config import MAX_CONCURRENT_REQUESTS
from core.errors import EntityDecodeError, RemoteError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# AuthError is a RemoteError, so it is dropped per item as well.
_DROPPED = (RemoteError, EntityDecodeError)


async def fetch_entities(
    ids: Iterable[int],
    fetch_one: Callable[[int], Awaitable[T]],
    limit: int = MAX_CONCURRENT_REQUESTS,
) -> List[T]:
    """Fetch every id through ``fetch_one`` with bounded concurrency.

    Result order is not guaranteed to match the input order. Errors outside
    the remote/decode family propagate to the caller.
    """

    if limit < 1:
        raise ValueError("limit must be at least 1")

    semaphore = asyncio.Semaphore(limit)

    async def _fetch(entity_id: int) -> tuple[int, Optional[T]]:
        async with semaphore:
            try:
                return entity_id, await fetch_one(entity_id)
            except _DROPPED as exc:
                LOGGER.warning("Dropping %s after fetch failure: %s", entity_id, exc)
                return entity_id, None

    unique_ids = list(dict.fromkeys(ids))
    if not unique_ids:
        return []
    results = await asyncio.gather(*(_fetch(entity_id) for entity_id in unique_ids))
    return [entity for _, entity in results if entity is not None]
