from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from core.domain.records import utcnow
from core.errors import NotFoundError, UpstreamError
from core.ports.broker import BrokerPort
from core.ports.token_provider import TokenProvider
from core.settings import Settings

logger = logging.getLogger(__name__)


class SpotwareBrokerClient(BrokerPort):
    """Authenticated GET proxy for the Spotware Connect REST API."""

    def __init__(
        self,
        tokens: TokenProvider,
        *,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_settings(
        cls, settings: Settings, tokens: TokenProvider, *, client: httpx.AsyncClient | None = None
    ) -> SpotwareBrokerClient:
        return cls(
            tokens,
            base_url=settings.api_base_url,
            timeout_seconds=settings.upstream_timeout_seconds,
            client=client,
        )

    async def _get(self, endpoint: str) -> Any:
        token = await self._tokens.get_valid_token()
        url = f"{self._base_url}{endpoint}"
        try:
            response = await self._client.get(
                url,
                params={"oauth_token": token},
                headers={"Accept": "application/json"},
                timeout=self._timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.exception("API call timed out: GET %s", endpoint)
            raise UpstreamError(f"API call timed out after {self._timeout_seconds:g}s") from exc
        except httpx.HTTPError as exc:
            logger.exception("API call error: GET %s", endpoint)
            raise UpstreamError(f"API call failed: {exc}") from exc

        if response.is_error:
            logger.error("API call failed: GET %s -> %s", endpoint, response.status_code)
            raise UpstreamError(f"API call failed: {response.status_code} {response.reason_phrase}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("API call returned invalid JSON") from exc

    async def get_profile(self) -> Mapping[str, Any]:
        return await self._get("/connect/profile")

    async def get_trading_accounts(self) -> Mapping[str, Any]:
        return await self._get("/connect/tradingaccounts")

    async def get_account_balance(self, account_id: str) -> dict[str, Any]:
        payload = await self.get_trading_accounts()
        accounts = payload.get("data") if isinstance(payload, Mapping) else None
        for account in accounts or []:
            if str(account.get("accountId")) == str(account_id):
                return normalize_balance(account)
        raise NotFoundError("Account not found")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def normalize_balance(account: Mapping[str, Any]) -> dict[str, Any]:
    """Scale the integer balance by ``moneyDigits`` and keep the display fields."""
    digits = account.get("moneyDigits") or 0
    balance = account.get("balance")
    return {
        "accountId": account.get("accountId"),
        "accountNumber": account.get("accountNumber"),
        "balance": balance / 10**digits if isinstance(balance, int | float) else None,
        "currency": account.get("depositCurrency"),
        "leverage": account.get("leverage"),
        "accountType": "LIVE" if account.get("live") else "DEMO",
        "status": account.get("accountStatus"),
        "lastUpdate": utcnow().isoformat(),
    }
