"""Domain models."""

from core.domain.records import (
    BridgeRecord,
    Collection,
    PositionRecord,
    QueryFilters,
    QueryResult,
    StressEventRecord,
    TradeRecord,
)

__all__ = [
    "BridgeRecord",
    "Collection",
    "PositionRecord",
    "QueryFilters",
    "QueryResult",
    "StressEventRecord",
    "TradeRecord",
]
