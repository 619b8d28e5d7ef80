import threading
from datetime import timedelta

import pytest

from app.persistence.db import DB
from app.persistence.ledger import Ledger
from app.persistence.state_store import StateStore
from app.runner.models import EntryType, TradeAction, TradeRecord, TradeResult
from app.tests.market_data import T0


def _record(coin_id="solana", **overrides):
    base = dict(
        id="",
        coin_id=coin_id,
        coin_symbol=coin_id[:3].upper(),
        coin_name=coin_id.title(),
        action=TradeAction.BUY,
        entry_price=100.0,
        target_price=110.0,
        stop_loss=95.0,
        entry_type=EntryType.IMMEDIATE,
        created_at=T0,
        probability_score=80,
    )
    base.update(overrides)
    return TradeRecord(**base)


def test_create_and_read_back(db):
    ledger = Ledger(db)
    stored = ledger.create_pending(_record())
    assert stored is not None
    assert stored.id
    assert stored.result == TradeResult.PENDING
    assert stored.created_at == T0
    assert ledger.get_pending().id == stored.id


def test_second_pending_is_refused(db):
    ledger = Ledger(db)
    assert ledger.create_pending(_record("solana")) is not None
    assert ledger.create_pending(_record("avalanche")) is None
    assert ledger.count_pending() == 1


def test_concurrent_creates_yield_one_pending(cfg):
    db = DB(cfg.DB_PATH)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker(i):
        ledger = Ledger(db)
        barrier.wait()
        r = ledger.create_pending(_record(f"coin{i}"))
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert sum(1 for r in results if r is not None) == 1
    assert Ledger(db).count_pending() == 1


def test_close_is_monotonic(db):
    ledger = Ledger(db)
    t = ledger.create_pending(_record())
    now = T0 + timedelta(hours=5)

    assert ledger.close(t, TradeResult.SUCCESS, 111.0, now) is True
    assert ledger.close(t, TradeResult.FAILED, 90.0, now + timedelta(hours=1)) is False

    stored = ledger.get(t.id)
    assert stored.result == TradeResult.SUCCESS
    assert stored.exit_price == 111.0
    assert stored.profit_loss_percent == pytest.approx(11.0)
    assert stored.closed_at == now
    assert ledger.get_pending() is None


def test_not_executed_has_no_pnl(db):
    ledger = Ledger(db)
    t = ledger.create_pending(_record(entry_type=EntryType.LIMIT))
    assert ledger.close(t, TradeResult.NOT_EXECUTED, 100.0, T0 + timedelta(hours=24))

    stored = ledger.get(t.id)
    assert stored.exit_price is None
    assert stored.profit_loss_percent == 0.0


def test_close_rejects_pending_result(db):
    ledger = Ledger(db)
    t = ledger.create_pending(_record())
    with pytest.raises(ValueError):
        ledger.close(t, TradeResult.PENDING, 100.0, T0)


def test_mark_filled_once(db):
    ledger = Ledger(db)
    t = ledger.create_pending(_record(entry_type=EntryType.LIMIT))
    assert ledger.mark_filled(t.id, T0 + timedelta(hours=1)) is True
    assert ledger.mark_filled(t.id, T0 + timedelta(hours=2)) is False
    stored = ledger.get(t.id)
    assert stored.entry_filled
    assert stored.filled_at == T0 + timedelta(hours=1)


def test_closed_trades_in_close_order(db):
    ledger = Ledger(db)
    closes = [(TradeResult.FAILED, 3), (TradeResult.SUCCESS, 1), (TradeResult.FAILED, 2)]
    for i, (result, h) in enumerate(closes):
        t = ledger.create_pending(_record(f"coin{i}"))
        ledger.close(t, result, 100.0, T0 + timedelta(hours=h))

    ordered = ledger.closed_trades()
    assert [t.closed_at for t in ordered] == sorted(t.closed_at for t in ordered)
    assert [t.result for t in ledger.list_trades(result=TradeResult.FAILED)] == [
        TradeResult.FAILED,
        TradeResult.FAILED,
    ]


def test_state_store_lazily_initialises(db):
    store = StateStore(db)
    st = store.load()
    assert st.mode == "paper"
    assert st.last_scan_at is None
    assert st.last_scan_summary == {}

    store.record_scan(T0, {"regime": "TREND_UP", "scanned": 3})
    st = store.load()
    assert st.last_scan_at == T0
    assert st.last_scan_summary["regime"] == "TREND_UP"



def test_state_store_follows_configured_mode(db):
    StateStore(db, default_mode="paper").record_scan(T0, {"regime": "CHOPPY"})

    live = StateStore(db, default_mode="live")
    st = live.load()
    assert st.mode == "live"
    assert st.last_scan_summary == {"regime": "CHOPPY"}

    StateStore(db, default_mode="paper").record_scan(T0, {})
    assert live.load().mode == "live"
    assert StateStore(db, default_mode="paper").load().mode == "paper"
