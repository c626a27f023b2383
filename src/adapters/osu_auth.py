"""osu! OAuth client-credentials token handling.

The token manager is the only owner of the bearer token. Readers get a copy of
the current value; refreshes are serialised so concurrent 401s trigger a
single exchange.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from core.clock import Clock
from core.errors import AuthError

LOGGER = logging.getLogger(__name__)

# Refresh this many seconds before the token actually expires.
REFRESH_MARGIN = 60.0


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_in: float
    expires_at: float


class TokenManager:
    """Exchanges client credentials for bearer tokens and keeps them fresh."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_id: str,
        client_secret: str,
        token_url: str,
        clock: Clock,
    ) -> None:
        self._session = session
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: Optional[AccessToken] = None
        self.exchanges = 0

    def _expired(self, token: AccessToken) -> bool:
        return self._clock.monotonic() >= token.expires_at

    async def _exchange(self) -> AccessToken:
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
            "scope": "public",
        }
        try:
            async with self._session.post(self._token_url, data=form) as response:
                if response.status != 200:
                    body = await response.text()
                    raise AuthError(
                        f"Token exchange returned {response.status}: {body[:200]}",
                        status=response.status,
                    )
                payload: Any = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise AuthError(f"Token exchange failed: {exc!r}") from exc
        except ValueError as exc:
            raise AuthError("Token exchange returned invalid JSON") from exc

        try:
            value = str(payload["access_token"])
            expires_in = float(payload["expires_in"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError(f"Token response is missing fields: {exc!r}") from exc

        self.exchanges += 1
        LOGGER.info("Obtained osu! access token valid for %ss", int(expires_in))
        return AccessToken(
            value=value,
            expires_in=expires_in,
            expires_at=self._clock.monotonic() + expires_in,
        )

    async def get_token(self) -> str:
        """Return the current token, exchanging credentials if there is none."""

        token = self._token
        if token is not None and not self._expired(token):
            return token.value
        return await self.reauthorise(token.value if token else None)

    async def reauthorise(self, stale: Optional[str]) -> str:
        """Replace ``stale`` with a fresh token.

        Callers that observed the same stale token while another refresh was
        in flight get the refreshed value without a second exchange.
        """

        async with self._lock:
            current = self._token
            if current is not None and current.value != stale and not self._expired(current):
                return current.value
            self._token = await self._exchange()
            return self._token.value

    async def run_refresh_loop(self) -> None:
        """Keep the token fresh forever. Raises AuthError when an exchange fails."""

        while True:
            current = self._token
            await self.reauthorise(current.value if current else None)
            token = self._token
            assert token is not None
            delay = max(token.expires_at - REFRESH_MARGIN - self._clock.monotonic(), 1.0)
            LOGGER.debug("Next osu! token refresh in %.0fs", delay)
            await self._clock.sleep(delay)
