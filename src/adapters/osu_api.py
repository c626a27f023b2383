"""osu! API v2 and website adapter.

Implements the remote source port: qualified beatmapset search, single
beatmapset lookups and group member scraping.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, List, Mapping, Optional

import aiohttp

from adapters.osu_auth import TokenManager
from adapters.osu_mapper import beatmapset_from_api, group_members_from_api, search_page_from_api
from core.config import MAX_CONCURRENT_REQUESTS
from core.errors import AuthError, EntityDecodeError, MalformedPayloadError, MarkerNotFoundError, RemoteError
from core.fetcher import fetch_entities
from core.models import Beatmapset, GroupMember, OsuGroup

LOGGER = logging.getLogger(__name__)

USERS_MARKER = '<script id="json-users" type="application/json">'
SCRIPT_END = "</script>"

_UNAUTHORISED = object()


def extract_group_users(page: str) -> Any:
    """Return the JSON user list embedded in an osu! group page."""

    start = page.find(USERS_MARKER)
    if start == -1:
        raise MarkerNotFoundError("json-users marker not found on group page")
    start += len(USERS_MARKER)
    end = page.find(SCRIPT_END, start)
    if end == -1:
        raise MarkerNotFoundError("json-users script is not terminated")
    try:
        return json.loads(page[start:end])
    except ValueError as exc:
        raise MalformedPayloadError(f"json-users payload is not JSON: {exc}") from exc


class OsuClient:
    """Authenticated osu! client sharing one aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        tokens: TokenManager,
        base_url: str,
        web_url: str,
        concurrency: int = MAX_CONCURRENT_REQUESTS,
    ) -> None:
        self._session = session
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._web_url = web_url.rstrip("/")
        self._concurrency = concurrency

    async def _get(
        self,
        url: str,
        params: Optional[Mapping[str, str]],
        token: str,
    ) -> Any:
        """GET ``url`` as JSON. Returns _UNAUTHORISED on 401 so the caller can re-auth."""

        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            async with self._session.get(url, params=params, headers=headers) as response:
                if response.status == 401:
                    return _UNAUTHORISED
                if response.status >= 400:
                    raise RemoteError(f"GET {url} returned {response.status}", status=response.status)
                try:
                    return await response.json(content_type=None)
                except ValueError as exc:
                    raise EntityDecodeError(f"GET {url} returned invalid JSON") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteError(f"GET {url} failed: {exc!r}") from exc

    async def request(self, path: str, params: Optional[Mapping[str, str]] = None) -> Any:
        """Authenticated GET against the API, re-authorising once on 401."""

        url = f"{self._base_url}{path}"
        token = await self._tokens.get_token()
        payload = await self._get(url, params, token)
        if payload is not _UNAUTHORISED:
            return payload

        LOGGER.info("osu! API rejected the token, re-authorising")
        token = await self._tokens.reauthorise(token)
        payload = await self._get(url, params, token)
        if payload is _UNAUTHORISED:
            raise AuthError(f"GET {url} still unauthorised after re-authorising", status=401)
        return payload

    async def fetch_qualified_ids(self) -> List[int]:
        """Walk every page of the qualified search and return the ids."""

        ids: List[int] = []
        cursor = ""
        seen_cursors: set[str] = set()
        while True:
            payload = await self.request(
                "/beatmapsets/search",
                {"nsfw": "true", "s": "qualified", "cursor_string": cursor},
            )
            page, next_cursor = search_page_from_api(payload)
            ids.extend(page)
            if next_cursor is None:
                break
            if next_cursor in seen_cursors:
                raise RemoteError(f"Search cursor {next_cursor!r} repeated")
            seen_cursors.add(next_cursor)
            cursor = next_cursor
        LOGGER.debug("Qualified search returned %s ids over %s pages", len(ids), len(seen_cursors) + 1)
        return list(dict.fromkeys(ids))

    async def fetch_beatmapset(self, beatmapset_id: int) -> Beatmapset:
        payload = await self.request(f"/beatmapsets/{beatmapset_id}")
        return beatmapset_from_api(payload)

    async def fetch_beatmapsets(self, beatmapset_ids: Iterable[int]) -> List[Beatmapset]:
        return await fetch_entities(beatmapset_ids, self.fetch_beatmapset, self._concurrency)

    async def fetch_group_members(self, group: OsuGroup) -> List[GroupMember]:
        """Scrape the public group page; no token is needed."""

        url = f"{self._web_url}/groups/{group.group_id}"
        try:
            async with self._session.get(url) as response:
                if response.status >= 400:
                    raise RemoteError(f"GET {url} returned {response.status}", status=response.status)
                page = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteError(f"GET {url} failed: {exc!r}") from exc
        members = group_members_from_api(extract_group_users(page))
        LOGGER.debug("Scraped %s members from %s", len(members), group.value)
        return members
