"""Account-scoped read views grouped by symbol, with a freshness verdict."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

from core.domain.records import BridgeRecord, Collection, QueryFilters
from core.ports.ingestion_store import IngestionStore
from core.services.query import filter_records, sort_by_recency
from core.services.stats import DEFAULT_FRESHNESS_WINDOW, classify_freshness

DEFAULT_ACCOUNT_TRADES_LIMIT = 50
SOURCE = "cBot-hybrid"


def _group_by_symbol(records: list[BridgeRecord]) -> dict[str | None, list[BridgeRecord]]:
    grouped: dict[str | None, list[BridgeRecord]] = defaultdict(list)
    for record in records:
        grouped[record.symbol].append(record)
    return grouped


def _sorted_symbols(symbols: set[str | None]) -> list[str | None]:
    return sorted(symbols, key=lambda symbol: symbol or "")


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def account_positions_view(
    store: IngestionStore,
    account_id: str,
    *,
    symbol: str | None = None,
    label: str | None = None,
    now: datetime,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> dict[str, Any]:
    """Positions of one account grouped by symbol.

    The symbol filter is an exact match here. Symbols last synced with an
    empty batch are listed with a zero count so callers can tell "no open
    positions" apart from "never reported".
    """
    last_update = store.account_activity().get(account_id)
    syncs = {sym: synced_at for (acc, sym), synced_at in store.symbol_syncs().items() if acc == account_id}
    records = [
        record
        for record in store.snapshot(Collection.POSITIONS)
        if record.account_id == account_id and (symbol is None or record.symbol == symbol)
    ]
    grouped = _group_by_symbol(records)
    symbols = set(grouped) | {sym for sym in syncs if symbol is None or sym == symbol}

    groups = []
    for sym in _sorted_symbols(symbols):
        members = grouped.get(sym, [])
        if label:
            members = [record for record in members if isinstance(record.label, str) and label in record.label]
        latest = max((record.last_update for record in grouped.get(sym, [])), default=None)
        synced_at = syncs.get(sym)
        if synced_at is not None and (latest is None or synced_at > latest):
            latest = synced_at
        groups.append(
            {
                "symbol": sym,
                "positions": [record.to_payload() for record in sort_by_recency(members)],
                "lastUpdate": _isoformat(latest),
                "count": len(members),
            }
        )

    return {
        "accountId": account_id,
        "labelFilter": label,
        "symbolFilter": symbol,
        "positions": groups,
        "totalCount": sum(group["count"] for group in groups),
        "dataFreshness": classify_freshness(last_update, now, freshness_window),
        "lastUpdate": _isoformat(last_update),
        "timestamp": now.isoformat(),
        "source": SOURCE,
    }


def account_trades_view(
    store: IngestionStore,
    account_id: str,
    *,
    symbol: str | None = None,
    limit: int = DEFAULT_ACCOUNT_TRADES_LIMIT,
    now: datetime,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> dict[str, Any]:
    """Most recent ``limit`` trades per symbol for one account."""
    last_update = store.account_activity().get(account_id)
    filters = QueryFilters(account_id=account_id)
    records = [
        record
        for record in store.snapshot(Collection.TRADES)
        if symbol is None or record.symbol == symbol
    ]
    grouped = _group_by_symbol(filter_records(records, filters, len(records)))

    groups = [
        {"symbol": sym, "trades": [record.to_payload() for record in grouped[sym][:limit]]}
        for sym in _sorted_symbols(set(grouped))
    ]
    return {
        "accountId": account_id,
        "symbolFilter": symbol,
        "trades": groups,
        "totalCount": sum(len(group["trades"]) for group in groups),
        "limit": limit,
        "dataFreshness": classify_freshness(last_update, now, freshness_window),
        "lastUpdate": _isoformat(last_update),
        "timestamp": now.isoformat(),
        "source": SOURCE,
    }


__all__ = ["DEFAULT_ACCOUNT_TRADES_LIMIT", "account_positions_view", "account_trades_view"]
