from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from adapters.storage.memory_store import InMemoryIngestionStore
from core.domain.records import Collection, PositionRecord, StressEventRecord, TradeRecord

T0 = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def _position(symbol: str, position_id: str, *, account_id: str | None = "acc-1", offset: int = 0, **extra):
    payload = {"symbol": symbol, "positionId": position_id, **extra}
    if account_id is not None:
        payload["accountId"] = account_id
    return PositionRecord.from_payload(payload, received_at=T0 + timedelta(seconds=offset))


def _trade(offset: int = 0, **fields) -> TradeRecord:
    return TradeRecord.from_payload(fields, received_at=T0 + timedelta(seconds=offset))


def test_upsert_replaces_same_identity_in_place() -> None:
    store = InMemoryIngestionStore()

    store.upsert_position(_position("EURUSD", "1", offset=0, netProfit=10))
    store.upsert_position(_position("GBPUSD", "2", offset=1))
    total = store.upsert_position(_position("EURUSD", "1", offset=5, netProfit=25))

    assert total == 2
    positions = store.snapshot(Collection.POSITIONS)
    assert [(p.symbol, p.position_id) for p in positions] == [("EURUSD", "1"), ("GBPUSD", "2")]
    assert positions[0].net_profit == 25
    assert positions[0].last_update == T0 + timedelta(seconds=5)


def test_upsert_identity_requires_symbol_and_position_id_match() -> None:
    store = InMemoryIngestionStore()

    store.upsert_position(_position("EURUSD", "1"))
    store.upsert_position(_position("GBPUSD", "1"))
    store.upsert_position(_position("EURUSD", "2"))
    store.upsert_position(_position("EURUSD", "1", account_id="acc-2"))

    assert store.count(Collection.POSITIONS) == 4


def test_positions_evict_oldest_when_over_cap() -> None:
    store = InMemoryIngestionStore(max_positions=3)

    for index in range(4):
        store.upsert_position(_position("EURUSD", str(index), offset=index))

    assert [p.position_id for p in store.snapshot(Collection.POSITIONS)] == ["1", "2", "3"]


def test_trades_are_bounded_fifo_and_never_deduplicated() -> None:
    store = InMemoryIngestionStore(max_trades=3)

    for index in range(4):
        store.append_trade(_trade(offset=index, symbol="EURUSD", netProfit=index))
    total = store.append_trade(_trade(offset=10, symbol="EURUSD", netProfit=3))

    trades = store.snapshot(Collection.TRADES)
    assert total == 3
    assert [t.net_profit for t in trades] == [2, 3, 3]


def test_stress_events_are_bounded() -> None:
    store = InMemoryIngestionStore(max_stress_events=2)

    for index in range(3):
        store.append_stress_event(
            StressEventRecord.from_payload({"symbol": "EURUSD", "maxDrawdown": index}, received_at=T0)
        )

    assert [e.max_drawdown for e in store.snapshot(Collection.STRESS)] == [1, 2]


def test_sync_symbol_positions_replaces_pair_and_accepts_empty_batch() -> None:
    store = InMemoryIngestionStore()
    store.upsert_position(_position("EURUSD", "1"))
    store.upsert_position(_position("EURUSD", "2"))
    store.upsert_position(_position("GBPUSD", "3"))

    synced_at = T0 + timedelta(minutes=1)
    total = store.sync_symbol_positions("acc-1", "EURUSD", [], synced_at=synced_at)

    assert total == 1
    assert [p.symbol for p in store.snapshot(Collection.POSITIONS)] == ["GBPUSD"]
    assert store.symbol_syncs() == {("acc-1", "EURUSD"): synced_at}
    assert store.account_activity()["acc-1"] == synced_at


def test_account_activity_keeps_latest_timestamp() -> None:
    store = InMemoryIngestionStore()
    later = T0 + timedelta(minutes=2)

    store.record_account_activity("acc-1", later)
    store.record_account_activity("acc-1", T0)

    assert store.account_activity() == {"acc-1": later}


def test_writes_without_account_do_not_touch_markers() -> None:
    store = InMemoryIngestionStore()

    store.upsert_position(_position("EURUSD", "1", account_id=None))
    store.append_trade(_trade(symbol="EURUSD"))

    assert store.account_activity() == {}


def test_snapshot_is_a_copy() -> None:
    store = InMemoryIngestionStore()
    store.append_trade(_trade(symbol="EURUSD"))

    snapshot = store.snapshot(Collection.TRADES)
    store.append_trade(_trade(symbol="GBPUSD"))

    assert len(snapshot) == 1
    assert store.count(Collection.TRADES) == 2


def test_rejects_non_positive_caps() -> None:
    with pytest.raises(ValueError):
        InMemoryIngestionStore(max_trades=0)


def _assert_writer_order(records: list, cap: int) -> None:
    assert len(records) <= cap
    last_seen: dict[int, int] = {}
    for record in records:
        payload = record.to_payload()
        writer, seq = payload["writer"], payload["seq"]
        assert seq > last_seen.get(writer, -1)
        last_seen[writer] = seq


def test_concurrent_appends_respect_cap_and_order() -> None:
    writers, per_writer, cap = 8, 250, 100
    store = InMemoryIngestionStore(max_trades=cap)
    done = threading.Event()
    snapshots: list[list] = []

    def write(writer: int) -> None:
        for seq in range(per_writer):
            store.append_trade(_trade(symbol="EURUSD", writer=writer, seq=seq))

    def read() -> None:
        while not done.is_set():
            snapshots.append(store.snapshot(Collection.TRADES))

    reader = threading.Thread(target=read)
    reader.start()
    with ThreadPoolExecutor(max_workers=writers) as pool:
        list(pool.map(write, range(writers)))
    done.set()
    reader.join()

    final = store.snapshot(Collection.TRADES)
    assert store.count(Collection.TRADES) == cap
    assert len(final) == cap
    _assert_writer_order(final, cap)
    for snapshot in snapshots:
        _assert_writer_order(snapshot, cap)


def test_concurrent_upserts_keep_exactly_the_cap() -> None:
    writers, per_writer, cap = 6, 100, 50
    store = InMemoryIngestionStore(max_positions=cap)
    done = threading.Event()
    snapshots: list[list] = []

    def write(writer: int) -> None:
        for seq in range(per_writer):
            store.upsert_position(_position("EURUSD", f"{writer}-{seq}", writer=writer, seq=seq))

    def read() -> None:
        while not done.is_set():
            snapshots.append(store.snapshot(Collection.POSITIONS))

    reader = threading.Thread(target=read)
    reader.start()
    with ThreadPoolExecutor(max_workers=writers) as pool:
        list(pool.map(write, range(writers)))
    done.set()
    reader.join()

    final = store.snapshot(Collection.POSITIONS)
    assert store.count(Collection.POSITIONS) == cap
    assert len({record.identity for record in final}) == cap
    _assert_writer_order(final, cap)
    for snapshot in snapshots:
        assert len({record.identity for record in snapshot}) == len(snapshot)
        _assert_writer_order(snapshot, cap)
