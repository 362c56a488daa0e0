from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class BrokerPort(Protocol):
    """Read-only access to the broker REST API."""

    async def get_profile(self) -> Mapping[str, Any]:
        """Return the authenticated user's profile."""

    async def get_trading_accounts(self) -> Mapping[str, Any]:
        """Return the trading accounts linked to the access token."""

    async def get_account_balance(self, account_id: str) -> dict[str, Any]:
        """Return the normalised balance of one trading account."""

    async def close(self) -> None:
        """Close any underlying connections."""
