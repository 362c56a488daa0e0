from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from collections.abc import Sequence
from datetime import datetime

from core.domain.records import BridgeRecord, Collection, PositionRecord, StressEventRecord, TradeRecord
from core.ports.ingestion_store import IngestionStore

logger = logging.getLogger(__name__)

PositionKey = tuple[str | None, str, str]


class InMemoryIngestionStore(IngestionStore):
    """Process-local store for cBot pushes with FIFO-bounded collections.

    Positions are keyed by identity in an ordered mapping so an upsert keeps
    the record's insertion slot; trades and stress events are plain bounded
    deques. Every public method runs under one lock, which makes each
    upsert/append/evict/snapshot sequence atomic for concurrent callers.
    """

    def __init__(
        self,
        *,
        max_positions: int = 1000,
        max_trades: int = 5000,
        max_stress_events: int = 500,
    ) -> None:
        if min(max_positions, max_trades, max_stress_events) <= 0:
            raise ValueError("Collection caps must be positive")
        self._lock = threading.Lock()
        self._max_positions = max_positions
        self._positions: OrderedDict[PositionKey, PositionRecord] = OrderedDict()
        self._trades: deque[TradeRecord] = deque(maxlen=max_trades)
        self._stress_events: deque[StressEventRecord] = deque(maxlen=max_stress_events)
        self._account_activity: dict[str, datetime] = {}
        self._symbol_syncs: dict[tuple[str, str], datetime] = {}

    def upsert_position(self, record: PositionRecord) -> int:
        with self._lock:
            key = record.identity
            replaced = key in self._positions
            # Assigning to an existing key keeps its slot in the ordering.
            self._positions[key] = record
            self._evict_positions()
            if record.account_id:
                self._touch_account(record.account_id, record.last_update)
            total = len(self._positions)
        logger.debug("%s position %s/%s", "Updated" if replaced else "Inserted", record.symbol, record.position_id)
        return total

    def sync_symbol_positions(
        self, account_id: str, symbol: str, positions: Sequence[PositionRecord], *, synced_at: datetime
    ) -> int:
        with self._lock:
            stale_keys = [key for key in self._positions if key[0] == account_id and key[1] == symbol]
            for key in stale_keys:
                del self._positions[key]
            for record in positions:
                self._positions[record.identity] = record
            self._evict_positions()
            self._symbol_syncs[(account_id, symbol)] = synced_at
            self._touch_account(account_id, synced_at)
            total = len(self._positions)
        logger.debug(
            "Synced %s/%s: dropped %d, stored %d positions", account_id, symbol, len(stale_keys), len(positions)
        )
        return total

    def append_trade(self, record: TradeRecord) -> int:
        with self._lock:
            self._append_bounded(self._trades, record, Collection.TRADES)
            if record.account_id:
                self._touch_account(record.account_id, record.last_update)
            return len(self._trades)

    def append_stress_event(self, record: StressEventRecord) -> int:
        with self._lock:
            self._append_bounded(self._stress_events, record, Collection.STRESS)
            if record.account_id:
                self._touch_account(record.account_id, record.last_update)
            return len(self._stress_events)

    def record_account_activity(self, account_id: str, timestamp: datetime) -> None:
        with self._lock:
            self._touch_account(account_id, timestamp)

    def snapshot(self, collection: Collection) -> list[BridgeRecord]:
        with self._lock:
            if collection is Collection.POSITIONS:
                return list(self._positions.values())
            if collection is Collection.TRADES:
                return list(self._trades)
            if collection is Collection.STRESS:
                return list(self._stress_events)
        raise ValueError(f"Unknown collection: {collection!r}")

    def count(self, collection: Collection) -> int:
        with self._lock:
            if collection is Collection.POSITIONS:
                return len(self._positions)
            if collection is Collection.TRADES:
                return len(self._trades)
            if collection is Collection.STRESS:
                return len(self._stress_events)
        raise ValueError(f"Unknown collection: {collection!r}")

    def account_activity(self) -> dict[str, datetime]:
        with self._lock:
            return dict(self._account_activity)

    def symbol_syncs(self) -> dict[tuple[str, str], datetime]:
        with self._lock:
            return dict(self._symbol_syncs)

    def _evict_positions(self) -> None:
        evicted = 0
        while len(self._positions) > self._max_positions:
            self._positions.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("Evicted %d oldest positions (cap=%d)", evicted, self._max_positions)

    @staticmethod
    def _append_bounded(buffer: deque, record: BridgeRecord, collection: Collection) -> None:
        if len(buffer) == buffer.maxlen:
            logger.debug("Evicted oldest %s record (cap=%d)", collection.value, buffer.maxlen)
        # deque(maxlen=...) drops from the left when full.
        buffer.append(record)

    def _touch_account(self, account_id: str, timestamp: datetime) -> None:
        current = self._account_activity.get(account_id)
        if current is None or timestamp > current:
            self._account_activity[account_id] = timestamp
