from __future__ import annotations

from datetime import UTC, datetime

import pytest

from core.domain.records import PositionRecord, StressEventRecord, TradeRecord, parse_timestamp
from core.errors import ValidationError

T0 = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def test_position_requires_symbol_and_position_id() -> None:
    with pytest.raises(ValidationError) as excinfo:
        PositionRecord.from_payload({"symbol": "EURUSD"}, received_at=T0)

    assert "positionId" in str(excinfo.value)


def test_position_keeps_extra_fields_and_overrides_last_update() -> None:
    record = PositionRecord.from_payload(
        {
            "accountId": 12345,
            "symbol": "EURUSD",
            "positionId": 987,
            "volume": 10000,
            "stopLoss": 1.05,
            "lastUpdate": "1999-01-01T00:00:00Z",
            "authToken": "secret",
        },
        received_at=T0,
    )

    assert record.identity == ("12345", "EURUSD", "987")
    assert record.last_update == T0
    payload = record.to_payload()
    assert payload["stopLoss"] == 1.05
    assert payload["accountId"] == "12345"
    assert payload["lastUpdate"].startswith("2026-10-17T12:00:00")
    assert "authToken" not in payload


def test_trade_stamps_received_at_and_uses_exit_time_for_recency() -> None:
    record = TradeRecord.from_payload({"symbol": "EURUSD", "exitTime": "2026-10-16T09:30:00Z"}, received_at=T0)

    assert record.received_at == T0
    assert record.recency_key() == datetime(2026, 10, 16, 9, 30, tzinfo=UTC)


def test_trade_without_exit_time_falls_back_to_last_update() -> None:
    record = TradeRecord.from_payload({"symbol": "EURUSD", "exitTime": "not-a-date"}, received_at=T0)

    assert record.recency_key() == T0


def test_stress_event_uses_start_time() -> None:
    record = StressEventRecord.from_payload({"symbol": "EURUSD", "startTime": 1_760_000_000_000}, received_at=T0)

    assert record.recency_key() == datetime.fromtimestamp(1_760_000_000, tz=UTC)


def test_non_object_payload_is_rejected() -> None:
    with pytest.raises(ValidationError):
        TradeRecord.from_payload(["EURUSD"], received_at=T0)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2026-10-17T12:00:00", datetime(2026, 10, 17, 12, 0, tzinfo=UTC)),
        ("2026-10-17T14:00:00+02:00", datetime(2026, 10, 17, 12, 0, tzinfo=UTC)),
        (1_760_702_400, datetime.fromtimestamp(1_760_702_400, tz=UTC)),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_timestamp(value, expected) -> None:  # noqa: ANN001
    assert parse_timestamp(value) == expected
