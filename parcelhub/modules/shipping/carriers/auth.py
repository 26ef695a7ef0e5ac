"""
OAuth token cache

Each carrier adapter owns one OAuthTokenCache. The bearer token is treated
as expired `expiry_margin` seconds before the carrier says it expires, so a
request never races carrier-side expiry.

Concurrent refreshes are single-flighted: while one coroutine fetches a
token, the others wait on the lock and reuse its result.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class AccessToken:
    """Bearer token as returned by a carrier auth endpoint."""
    value: str
    expires_in: int  # seconds


class OAuthTokenCache:
    """Per-adapter bearer token cache with an expiry safety margin."""

    def __init__(
        self,
        name: str,
        expiry_margin: int = 300,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.name = name
        self.expiry_margin = timedelta(seconds=expiry_margin)
        self._now = now
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_valid(self) -> bool:
        if not self._access_token or not self._token_expires_at:
            return False
        return self._now() < self._token_expires_at - self.expiry_margin

    def invalidate(self) -> None:
        """Drop the cached token (e.g. after a 401)."""
        self._access_token = None
        self._token_expires_at = None

    async def get_token(self, fetch: Callable[[], Awaitable[AccessToken]]) -> str:
        """
        Return a valid token, calling `fetch` only when needed.

        Args:
            fetch: Coroutine function performing the carrier auth request

        Raises:
            Whatever `fetch` raises; the cache stays empty in that case
        """
        if self._is_valid():
            return self._access_token

        async with self._lock:
            # Another coroutine may have refreshed while we waited
            if self._is_valid():
                return self._access_token

            token = await fetch()
            self._access_token = token.value
            self._token_expires_at = self._now() + timedelta(seconds=token.expires_in)
            self.refresh_count += 1

            logger.info(f"{self.name} OAuth token obtained, expires in {token.expires_in}s")
            return self._access_token
