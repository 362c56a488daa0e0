from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from core.domain.records import PositionRecord, StressEventRecord, TradeRecord, utcnow
from core.errors import AuthError, ValidationError
from core.ports.ingestion_store import IngestionStore

logger = logging.getLogger(__name__)

AUTH_FIELD = "authToken"


@dataclass(frozen=True)
class IngestOutcome:
    accepted: int
    total: int
    received_at: datetime
    record_id: Any = None


class IngestionService:
    """Auth gate and payload validation in front of the ingestion store.

    Each ``ingest_*`` call authenticates, then fully validates the body, and
    only then mutates the store, so a rejected request leaves no trace.
    """

    def __init__(
        self,
        store: IngestionStore,
        *,
        auth_token: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._auth_token = auth_token
        self._clock = clock

    @property
    def auth_required(self) -> bool:
        return bool(self._auth_token)

    def authenticate(self, payload: Any, header_token: str | None = None) -> None:
        if not self._auth_token:
            return
        supplied = payload.get(AUTH_FIELD) if isinstance(payload, Mapping) else None
        if supplied is None:
            supplied = header_token
        if not isinstance(supplied, str) or not secrets.compare_digest(
            supplied.encode(), self._auth_token.encode()
        ):
            logger.warning("Rejected cBot push with invalid auth token")
            raise AuthError("Invalid auth token")

    def ingest_positions(self, payload: Any, *, header_token: str | None = None) -> IngestOutcome:
        self.authenticate(payload, header_token)
        _require_object(payload)
        if "positions" in payload:
            return self._sync_symbol(payload)

        received_at = self._clock()
        record = PositionRecord.from_payload(payload, received_at=received_at)
        total = self._store.upsert_position(record)
        logger.info(
            "Received position %s %s (account=%s), %d stored",
            record.symbol,
            record.position_id,
            record.account_id,
            total,
        )
        return IngestOutcome(accepted=1, total=total, received_at=received_at, record_id=record.position_id)

    def ingest_trade(self, payload: Any, *, header_token: str | None = None) -> IngestOutcome:
        self.authenticate(payload, header_token)
        _require_object(payload)
        received_at = self._clock()
        record = TradeRecord.from_payload(_unwrap_envelope(payload, "trade"), received_at=received_at)
        total = self._store.append_trade(record)
        logger.info(
            "Received completed trade %s %s profit=%s, %d stored",
            record.trade_type,
            record.symbol,
            record.net_profit,
            total,
        )
        return IngestOutcome(accepted=1, total=total, received_at=received_at, record_id=record.position_id)

    def ingest_stress_event(self, payload: Any, *, header_token: str | None = None) -> IngestOutcome:
        self.authenticate(payload, header_token)
        _require_object(payload)
        received_at = self._clock()
        record = StressEventRecord.from_payload(payload, received_at=received_at)
        total = self._store.append_stress_event(record)
        logger.info("Received stress event %s maxDrawdown=%s, %d stored", record.symbol, record.max_drawdown, total)
        return IngestOutcome(accepted=1, total=total, received_at=received_at)

    def _sync_symbol(self, payload: Mapping[str, Any]) -> IngestOutcome:
        account_id = _text(payload.get("accountId"))
        symbol = _text(payload.get("symbol"))
        positions = payload.get("positions")
        if not account_id or not symbol or not isinstance(positions, list):
            raise ValidationError("Missing required fields: accountId, symbol, positions")

        received_at = self._clock()
        records = []
        for index, item in enumerate(positions):
            if not isinstance(item, Mapping):
                raise ValidationError(f"positions[{index}] must be a JSON object")
            body = {**item, "accountId": account_id, "symbol": symbol}
            try:
                records.append(PositionRecord.from_payload(body, received_at=received_at))
            except ValidationError as exc:
                raise ValidationError(f"positions[{index}]: {exc.message}") from exc

        total = self._store.sync_symbol_positions(account_id, symbol, records, synced_at=received_at)
        logger.info("Received %d positions from cBot for %s on account %s", len(records), symbol, account_id)
        return IngestOutcome(accepted=len(records), total=total, received_at=received_at)


def _require_object(payload: Any) -> None:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")


def _unwrap_envelope(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Flatten ``{accountId, symbol, <key>: {...}}`` bodies sent by older cBots."""
    inner = payload.get(key)
    if not isinstance(inner, Mapping):
        return payload
    merged = dict(inner)
    for field in ("accountId", "symbol"):
        if field in payload and merged.get(field) is None:
            merged[field] = payload[field]
    return merged


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, bool | dict | list):
        return None
    text = str(value).strip()
    return text or None


__all__ = ["AUTH_FIELD", "IngestOutcome", "IngestionService"]
