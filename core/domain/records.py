from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError

# Epoch values above this are treated as milliseconds.
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000

_CLIENT_ONLY_KEYS = ("authToken",)


class Collection(str, Enum):
    POSITIONS = "positions"
    TRADES = "trades"
    STRESS = "stress"


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings and epoch numbers into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool | dict | list):
        raise ValueError("expected a string or number")
    text = str(value).strip()
    return text or None


class BridgeRecord(BaseModel):
    """Record pushed by the cBot; unknown fields are kept verbatim."""

    account_id: str | None = Field(default=None, alias="accountId")
    symbol: str | None = None
    label: Any = None
    last_update: datetime = Field(default_factory=utcnow, alias="lastUpdate")

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    @field_validator("account_id", "symbol", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _optional_str(value)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, received_at: datetime) -> BridgeRecord:
        """Validate a raw push body, stamping the store-assigned timestamps."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")
        raw = {key: value for key, value in payload.items() if key not in _CLIENT_ONLY_KEYS}
        raw.update(cls._stamp_fields(received_at))
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as exc:
            fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
            raise ValidationError(f"Invalid fields: {', '.join(fields)}") from exc

    @classmethod
    def _stamp_fields(cls, received_at: datetime) -> dict[str, Any]:
        return {"lastUpdate": received_at}

    def recency_key(self) -> datetime:
        return self.last_update

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PositionRecord(BridgeRecord):
    """Open position; identity is (accountId, symbol, positionId)."""

    symbol: str
    position_id: str = Field(alias="positionId")
    trade_type: Any = Field(default=None, alias="tradeType")
    volume: Any = None
    net_profit: Any = Field(default=None, alias="netProfit")

    @field_validator("position_id", mode="before")
    @classmethod
    def _coerce_position_id(cls, value: Any) -> str | None:
        return _optional_str(value)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, received_at: datetime) -> PositionRecord:
        if isinstance(payload, Mapping):
            missing = [name for name in ("symbol", "positionId") if _optional_str_or_none(payload.get(name)) is None]
            if missing:
                raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return super().from_payload(payload, received_at=received_at)

    @property
    def identity(self) -> tuple[str | None, str, str]:
        return (self.account_id, self.symbol, self.position_id)


class TradeRecord(BridgeRecord):
    """Closed trade; always appended."""

    position_id: Any = Field(default=None, alias="positionId")
    trade_type: Any = Field(default=None, alias="tradeType")
    net_profit: Any = Field(default=None, alias="netProfit")
    exit_time: Any = Field(default=None, alias="exitTime")
    received_at: datetime = Field(default_factory=utcnow, alias="receivedAt")

    @classmethod
    def _stamp_fields(cls, received_at: datetime) -> dict[str, Any]:
        return {"lastUpdate": received_at, "receivedAt": received_at}

    def recency_key(self) -> datetime:
        return parse_timestamp(self.exit_time) or self.last_update


class StressEventRecord(BridgeRecord):
    """Risk event such as a drawdown threshold breach; always appended."""

    max_drawdown: Any = Field(default=None, alias="maxDrawdown")
    start_time: Any = Field(default=None, alias="startTime")

    def recency_key(self) -> datetime:
        return parse_timestamp(self.start_time) or self.last_update


def _optional_str_or_none(value: Any) -> str | None:
    try:
        return _optional_str(value)
    except ValueError:
        return None


class QueryFilters(BaseModel):
    symbol: str | None = None
    label: str | None = None
    account_id: str | None = Field(default=None, alias="accountId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, str | None]:
        payload: dict[str, str | None] = {"symbol": self.symbol, "label": self.label}
        if self.account_id is not None:
            payload["accountId"] = self.account_id
        return payload


@dataclass(frozen=True)
class QueryResult:
    data: list[BridgeRecord]
    total_stored: int
    filters: QueryFilters
    limit: int
    count: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "count", len(self.data))


__all__ = [
    "BridgeRecord",
    "Collection",
    "PositionRecord",
    "QueryFilters",
    "QueryResult",
    "StressEventRecord",
    "TradeRecord",
    "parse_timestamp",
    "utcnow",
]
