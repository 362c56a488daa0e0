from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from core.domain.records import Collection
from core.ports.ingestion_store import IngestionStore

Freshness = Literal["fresh", "stale"]

RECENT_WINDOW = timedelta(hours=24)
DEFAULT_FRESHNESS_WINDOW = timedelta(minutes=5)

_PAYLOAD_KEYS = {
    Collection.POSITIONS: "positions",
    Collection.TRADES: "trades",
    Collection.STRESS: "stressEvents",
}


def classify_freshness(
    last_update: datetime | None, now: datetime, window: timedelta = DEFAULT_FRESHNESS_WINDOW
) -> Freshness:
    if last_update is None:
        return "stale"
    return "fresh" if now - last_update < window else "stale"


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CollectionStats:
    total: int
    recent: int
    last_activity: datetime | None


@dataclass(frozen=True)
class StatusSnapshot:
    collections: dict[Collection, CollectionStats]
    last_activity: datetime | None
    accounts: dict[str, datetime]
    symbols: frozenset[str]
    generated_at: datetime
    freshness_window: timedelta

    def to_payload(self) -> dict[str, Any]:
        return {
            "totals": {_PAYLOAD_KEYS[key]: stats.total for key, stats in self.collections.items()},
            "recent24h": {_PAYLOAD_KEYS[key]: stats.recent for key, stats in self.collections.items()},
            "lastActivity": _isoformat(self.last_activity),
            "lastActivityByCollection": {
                _PAYLOAD_KEYS[key]: _isoformat(stats.last_activity) for key, stats in self.collections.items()
            },
            "totalAccounts": len(self.accounts),
            "totalSymbols": len(self.symbols),
            "accounts": {
                account_id: {
                    "lastUpdate": _isoformat(marker),
                    "dataFreshness": classify_freshness(marker, self.generated_at, self.freshness_window),
                }
                for account_id, marker in sorted(self.accounts.items())
            },
            "systemType": "hybrid-rest-push",
        }


def build_status(
    store: IngestionStore,
    *,
    now: datetime,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> StatusSnapshot:
    """Aggregate counts and recency over every collection; empty stores yield zeros."""
    since = now - RECENT_WINDOW
    collections: dict[Collection, CollectionStats] = {}
    symbols: set[str] = set()
    for collection in Collection:
        records = store.snapshot(collection)
        keys = [record.recency_key() for record in records]
        collections[collection] = CollectionStats(
            total=len(records),
            recent=sum(1 for key in keys if key >= since),
            last_activity=max(keys, default=None),
        )
        symbols.update(record.symbol for record in records if record.symbol)

    symbols.update(symbol for _, symbol in store.symbol_syncs())
    latest = [stats.last_activity for stats in collections.values() if stats.last_activity is not None]
    return StatusSnapshot(
        collections=collections,
        last_activity=max(latest, default=None),
        accounts=store.account_activity(),
        symbols=frozenset(symbols),
        generated_at=now,
        freshness_window=freshness_window,
    )


__all__ = ["CollectionStats", "StatusSnapshot", "build_status", "classify_freshness"]
