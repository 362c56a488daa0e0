"""Filtered, recency-ordered read views over the ingestion store."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from core.domain.records import BridgeRecord, Collection, QueryFilters, QueryResult
from core.errors import ValidationError
from core.ports.ingestion_store import IngestionStore

DEFAULT_LIMITS: dict[Collection, int] = {
    Collection.POSITIONS: 100,
    Collection.TRADES: 1000,
    Collection.STRESS: 100,
}


def matches(record: BridgeRecord, filters: QueryFilters) -> bool:
    """Symbol is a case-insensitive substring match, label a case-sensitive one."""
    if filters.symbol:
        if not isinstance(record.symbol, str) or filters.symbol.lower() not in record.symbol.lower():
            return False
    if filters.label:
        if not isinstance(record.label, str) or filters.label not in record.label:
            return False
    if filters.account_id is not None and record.account_id != filters.account_id:
        return False
    return True


def sort_by_recency(records: Iterable[BridgeRecord]) -> list[BridgeRecord]:
    """Newest first; equal keys keep the later-inserted record first."""
    indexed = list(enumerate(records))
    indexed.sort(key=lambda item: (item[1].recency_key(), item[0]), reverse=True)
    return [record for _, record in indexed]


def resolve_limit(collection: Collection, limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMITS[collection]
    if limit <= 0:
        raise ValidationError("limit must be a positive integer")
    return limit


def filter_records(
    records: Sequence[BridgeRecord], filters: QueryFilters, limit: int
) -> list[BridgeRecord]:
    selected = [record for record in records if matches(record, filters)]
    return sort_by_recency(selected)[:limit]


def query(
    store: IngestionStore,
    collection: Collection,
    filters: QueryFilters | None = None,
    limit: int | None = None,
) -> QueryResult:
    effective_filters = filters or QueryFilters()
    effective_limit = resolve_limit(collection, limit)
    records = store.snapshot(collection)
    return QueryResult(
        data=filter_records(records, effective_filters, effective_limit),
        total_stored=len(records),
        filters=effective_filters,
        limit=effective_limit,
    )


__all__ = ["DEFAULT_LIMITS", "filter_records", "matches", "query", "resolve_limit", "sort_by_recency"]
