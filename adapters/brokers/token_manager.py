from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import httpx

from core.domain.records import utcnow
from core.errors import UpstreamError
from core.ports.token_provider import TokenProvider
from core.settings import Settings

logger = logging.getLogger(__name__)


class OAuthTokenManager(TokenProvider):
    """Caches the cTrader OAuth tokens and refreshes them shortly before expiry."""

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        access_token: str | None,
        refresh_token: str | None,
        token_url: str,
        refresh_margin: timedelta = timedelta(minutes=5),
        initial_ttl: timedelta = timedelta(hours=1),
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._token_url = token_url
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._initial_ttl = initial_ttl
        self._expires_at = clock() + initial_ttl
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> OAuthTokenManager:
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            access_token=settings.access_token,
            refresh_token=settings.refresh_token,
            token_url=settings.token_url,
            refresh_margin=timedelta(seconds=settings.token_refresh_margin_seconds),
            initial_ttl=timedelta(seconds=settings.token_initial_ttl_seconds),
            timeout_seconds=settings.upstream_timeout_seconds,
            client=client,
        )

    @property
    def expires_at(self) -> datetime:
        return self._expires_at

    async def get_valid_token(self) -> str:
        async with self._lock:
            if self._clock() + self._refresh_margin >= self._expires_at:
                logger.info("Token expiring soon, refreshing")
                await self._refresh()
        if not self._access_token:
            raise UpstreamError("No access token configured")
        return self._access_token

    async def _refresh(self) -> None:
        if not self._refresh_token:
            raise UpstreamError("Unable to refresh token: no refresh token configured")

        params = {
            "grant_type": "refresh_token",
            "refresh_token": self._refresh_token,
            "client_id": self._client_id or "",
            "client_secret": self._client_secret or "",
        }
        try:
            response = await self._client.get(
                self._token_url,
                params=params,
                headers={"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Token refresh request failed")
            raise UpstreamError(f"Unable to refresh token: {exc}") from exc

        access_token = data.get("accessToken") if isinstance(data, dict) else None
        if not access_token:
            logger.error("Token refresh failed: %s", data)
            raise UpstreamError("Unable to refresh token")

        self._access_token = access_token
        if data.get("refreshToken"):
            self._refresh_token = data["refreshToken"]
        expires_in = data.get("expiresIn")
        if isinstance(expires_in, int | float) and not isinstance(expires_in, bool) and expires_in > 0:
            self._expires_at = self._clock() + timedelta(seconds=expires_in)
        else:
            logger.warning("Token refresh response has no usable expiresIn; assuming %s", self._initial_ttl)
            self._expires_at = self._clock() + self._initial_ttl
        logger.info("Token refreshed successfully, expires at %s", self._expires_at.isoformat())

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
