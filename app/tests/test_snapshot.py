import json
from datetime import timedelta

import pytest
import requests

from app.core.config import Settings
from app.core.errors import MarketDataUnavailable
from app.intel.whale import (
    DisabledWhaleSource,
    HttpWhaleSource,
    WhaleIntent,
    build_whale_source,
    parse_reading,
)
from app.market.snapshot import CoinSnapshot, SnapshotReader, parse_payload
from app.tests.market_data import T0, coin, uptrend_market


def _payload(**overrides):
    base = {"updatedAt": "2026-03-02T12:00:00Z", "source": "coingecko", "coins": uptrend_market()}
    base.update(overrides)
    return base


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def test_parse_payload():
    snap = parse_payload(_payload())
    assert snap.updated_at == T0
    assert snap.source == "coingecko"
    assert snap.find("solana").symbol == "SOL"
    assert snap.find("dogecoin") is None


def test_coin_defaults_and_derived_volume_ratio():
    c = CoinSnapshot.from_payload({"id": "x", "symbol": "x", "marketCap": 1000, "volume24h": 50})
    assert c.symbol == "X"
    assert c.volume_to_mcap == pytest.approx(0.05)
    assert c.rsi14 == 50.0
    assert c.market_cap_rank == 9999

    c = CoinSnapshot.from_payload(coin(volumeToMcap=0.09, rsi14=None))
    assert c.volume_to_mcap == 0.09
    assert c.rsi14 == 50.0


def test_empty_or_undated_snapshot_is_unavailable():
    with pytest.raises(MarketDataUnavailable):
        parse_payload(_payload(coins=[]))
    with pytest.raises(MarketDataUnavailable):
        parse_payload(_payload(updatedAt=None))
    with pytest.raises(MarketDataUnavailable):
        parse_payload(["not", "an", "object"])


def test_reader_loads_file(tmp_path):
    path = tmp_path / "full_market.json"
    path.write_text(json.dumps(_payload()), encoding="utf-8")
    reader = SnapshotReader(Settings(MARKET_SNAPSHOT_PATH=str(path)))
    snap = reader.load(T0 + timedelta(minutes=5))
    assert len(snap.coins) == 3


def test_reader_missing_file_is_unavailable(tmp_path):
    reader = SnapshotReader(Settings(MARKET_SNAPSHOT_PATH=str(tmp_path / "nope.json")))
    with pytest.raises(MarketDataUnavailable):
        reader.load(T0)


def test_reader_url_failure_is_unavailable(monkeypatch):
    def boom(*a, **kw):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(requests, "get", boom)
    reader = SnapshotReader(Settings(MARKET_SNAPSHOT_URL="http://ingest.local/full_market.json"))
    with pytest.raises(MarketDataUnavailable):
        reader.load(T0)


def test_stale_snapshot_is_used_and_refresh_is_throttled(monkeypatch, tmp_path):
    posted = []
    monkeypatch.setattr(requests, "post", lambda url, **kw: posted.append(url) or _Resp(202))

    path = tmp_path / "full_market.json"
    path.write_text(json.dumps(_payload()), encoding="utf-8")
    reader = SnapshotReader(
        Settings(
            MARKET_SNAPSHOT_PATH=str(path),
            MARKET_REFRESH_URL="http://ingest.local/refresh",
            SNAPSHOT_STALE_SECONDS=3600,
        )
    )

    later = T0 + timedelta(hours=2)
    snap = reader.load(later)
    assert snap.is_stale(later, 3600)
    assert reader._last_refresh_request == later

    # a second stale read inside the window does not dispatch again
    assert reader.request_refresh(later + timedelta(minutes=1)) is False
    assert reader.request_refresh(later + timedelta(minutes=20)) is True


def test_whale_reading_shapes():
    nested = parse_reading({"whaleIntent": {"classification": "accumulating"}, "confidenceScore": 82})
    assert nested.intent == WhaleIntent.ACCUMULATING
    assert nested.confidence == 82.0
    assert nested.supports("BUY") and nested.opposes("SELL")

    flat = parse_reading({"intent": "weird", "confidence": 140})
    assert flat.intent == WhaleIntent.NEUTRAL
    assert flat.confidence == 100.0


def test_whale_source_disabled_without_urls():
    assert isinstance(build_whale_source(Settings()), DisabledWhaleSource)
    assert DisabledWhaleSource().read() is None


def test_whale_source_failure_returns_none(monkeypatch):
    def boom(*a, **kw):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "get", boom)
    s = Settings(WHALE_FEED_URL="http://feed.local/tx", WHALE_INTEL_URL="http://intel.local/classify")
    assert HttpWhaleSource(s).read() is None


def test_whale_source_classifies_feed(monkeypatch):
    monkeypatch.setattr(
        requests, "get", lambda *a, **kw: _Resp(200, {"transactions": [{"amount": 1_000_000}]})
    )
    monkeypatch.setattr(
        requests, "post", lambda *a, **kw: _Resp(200, {"intent": "distributing", "confidence": 75})
    )
    s = Settings(WHALE_FEED_URL="http://feed.local/tx", WHALE_INTEL_URL="http://intel.local/classify")
    reading = build_whale_source(s).read()
    assert reading.intent == WhaleIntent.DISTRIBUTING
    assert reading.confidence == 75.0


@pytest.mark.parametrize("feed", [None, 42, "down", {"transactions": None}, {"transactions": 7}])
def test_whale_source_malformed_feed_returns_none(monkeypatch, feed):
    monkeypatch.setattr(requests, "get", lambda *a, **kw: _Resp(200, feed))
    posted = []
    monkeypatch.setattr(requests, "post", lambda *a, **kw: posted.append(a) or _Resp(200, {}))
    s = Settings(WHALE_FEED_URL="http://feed.local/tx", WHALE_INTEL_URL="http://intel.local/classify")
    assert HttpWhaleSource(s).read() is None
    assert posted == []


def test_non_finite_numbers_fall_back_to_defaults():
    payload = json.loads(
        '{"updatedAt": "2026-03-02T12:00:00Z", "coins": [{"id": "x", "symbol": "x",'
        ' "marketCapRank": Infinity, "currentPrice": -Infinity, "change24h": NaN, "rsi14": Infinity}]}'
    )
    c = parse_payload(payload).coins[0]
    assert c.market_cap_rank == 9999
    assert c.current_price == 0.0
    assert c.change_24h == 0.0
    assert c.rsi14 == 50.0
