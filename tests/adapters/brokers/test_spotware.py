from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from adapters.brokers.spotware import SpotwareBrokerClient, normalize_balance
from core.errors import NotFoundError, UpstreamError

ACCOUNTS = {
    "data": [
        {
            "accountId": 1001,
            "accountNumber": 555,
            "balance": 1234567,
            "moneyDigits": 2,
            "depositCurrency": "EUR",
            "leverage": 30,
            "live": False,
            "accountStatus": "ACTIVE",
        }
    ]
}


class StaticTokens:
    expires_at = datetime(2026, 10, 17, 13, 0, tzinfo=UTC)

    async def get_valid_token(self) -> str:
        return "token-abc"

    async def close(self) -> None:
        return None


def _client(handler) -> SpotwareBrokerClient:  # noqa: ANN001
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpotwareBrokerClient(StaticTokens(), base_url="https://api.example/", client=http)


def test_profile_passes_oauth_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": {"userId": 7}})

    profile = asyncio.run(_client(handler).get_profile())

    assert profile == {"data": {"userId": 7}}
    assert seen[0].url.path == "/connect/profile"
    assert seen[0].url.params["oauth_token"] == "token-abc"


def test_account_balance_is_normalised() -> None:
    broker = _client(lambda request: httpx.Response(200, json=ACCOUNTS))

    balance = asyncio.run(broker.get_account_balance("1001"))

    assert balance["balance"] == pytest.approx(12345.67)
    assert balance["currency"] == "EUR"
    assert balance["accountType"] == "DEMO"


def test_unknown_account_raises_not_found() -> None:
    broker = _client(lambda request: httpx.Response(200, json=ACCOUNTS))

    with pytest.raises(NotFoundError):
        asyncio.run(broker.get_account_balance("9999"))


def test_http_error_status_surfaces_upstream_error() -> None:
    broker = _client(lambda request: httpx.Response(403))

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(broker.get_trading_accounts())

    assert "403" in str(excinfo.value)


def test_timeout_surfaces_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(_client(handler).get_profile())

    assert "timed out" in str(excinfo.value)


def test_normalize_balance_handles_missing_balance() -> None:
    assert normalize_balance({"accountId": 1, "live": True})["balance"] is None
