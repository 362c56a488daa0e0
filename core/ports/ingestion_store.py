from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from core.domain.records import BridgeRecord, Collection, PositionRecord, StressEventRecord, TradeRecord


class IngestionStore(Protocol):
    """Bounded in-memory buffer for records pushed by the cBot."""

    def upsert_position(self, record: PositionRecord) -> int:
        """Insert or replace a position by identity; return the stored total."""

    def sync_symbol_positions(
        self, account_id: str, symbol: str, positions: Sequence[PositionRecord], *, synced_at: datetime
    ) -> int:
        """Replace every position of an account/symbol pair; return the stored total."""

    def append_trade(self, record: TradeRecord) -> int:
        """Append a closed trade; return the stored total."""

    def append_stress_event(self, record: StressEventRecord) -> int:
        """Append a stress event; return the stored total."""

    def record_account_activity(self, account_id: str, timestamp: datetime) -> None:
        """Advance the freshness marker of an account."""

    def snapshot(self, collection: Collection) -> list[BridgeRecord]:
        """Point-in-time copy of a collection in insertion order."""

    def count(self, collection: Collection) -> int:
        """Number of records currently stored in a collection."""

    def account_activity(self) -> dict[str, datetime]:
        """Copy of the per-account freshness markers."""

    def symbol_syncs(self) -> dict[tuple[str, str], datetime]:
        """Copy of the last batch sync time per (account, symbol)."""
