import copy
from datetime import datetime, timezone

from app.core.errors import MarketDataUnavailable
from app.market.snapshot import parse_payload

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def coin(**overrides):
    """A liquid large-cap in a clean uptrend that passes every filter."""
    base = dict(
        id="solana",
        symbol="SOL",
        name="Solana",
        image="https://img/sol.png",
        currentPrice=100.0,
        marketCap=40_000_000_000,
        marketCapRank=5,
        volume24h=2_000_000_000,
        change1h=0.2,
        change24h=1.0,
        change7d=6.0,
        change30d=8.0,
        rsi14=52.0,
        atr14=3.0,
    )
    base.update(overrides)
    return base


def uptrend_market(*extra):
    """BTC/ETH trending up but overbought (both rejected), SOL qualifies."""
    return [
        coin(id="bitcoin", symbol="BTC", name="Bitcoin", marketCapRank=1,
             marketCap=1_300_000_000_000, volume24h=40_000_000_000,
             change24h=1.0, change7d=4.0, rsi14=75.0),
        coin(id="ethereum", symbol="ETH", name="Ethereum", marketCapRank=2,
             marketCap=400_000_000_000, volume24h=20_000_000_000,
             change24h=1.5, change7d=5.0, rsi14=78.0),
        coin(),
        *extra,
    ]


class FakeSnapshots:
    """In-memory snapshot source; tests mutate prices between invocations."""

    def __init__(self, coins, updated_at=T0):
        self.coins = [dict(c) for c in coins]
        self.updated_at = updated_at
        self.fail = False
        self.loads = 0

    def set_price(self, coin_id, price):
        self.update(coin_id, currentPrice=price)

    def update(self, coin_id, **fields):
        for c in self.coins:
            if c["id"] == coin_id:
                c.update(fields)

    def remove(self, coin_id):
        self.coins = [c for c in self.coins if c["id"] != coin_id]

    def load(self, now=None):
        self.loads += 1
        if self.fail:
            raise MarketDataUnavailable("no market data available")
        return parse_payload(
            {
                "updatedAt": self.updated_at.isoformat(),
                "source": "test",
                "coins": copy.deepcopy(self.coins),
            }
        )
