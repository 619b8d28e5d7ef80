import random

import pytest

from app.core.config import Settings
from app.intel.whale import WhaleIntent, WhaleReading
from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.runner.models import EntryType, TradeAction
from app.strategy.filters import passes_setup_filtering
from app.strategy.funnel import run_funnel
from app.strategy.scoring import calculate_probability_score, expected_hours_to_target
from app.strategy.setup import calculate_swing_setup
from app.tests.market_data import coin


def _c(**kw):
    return CoinSnapshot.from_payload(coin(**kw))


@pytest.fixture
def s():
    return Settings()


def test_clean_uptrend_coin_passes_filters(s):
    r = passes_setup_filtering(_c(), Regime.TREND_UP, s)
    assert r.passes
    assert any("Clean RSI" in x for x in r.reasons)


@pytest.mark.parametrize(
    "overrides, needle",
    [
        (dict(rsi14=72), "RSI at extreme"),
        (dict(change1h=2.5), "Volatile"),
        (dict(volume24h=400_000_000), "Low volume"),
        (dict(change7d=-2), "Not aligned"),
    ],
)
def test_single_failure_excludes(s, overrides, needle):
    r = passes_setup_filtering(_c(**overrides), Regime.TREND_UP, s)
    assert not r.passes
    assert needle in r.reasons[0]


def test_choppy_needs_clear_weekly_move(s):
    assert not passes_setup_filtering(_c(change7d=2), Regime.CHOPPY, s).passes
    assert passes_setup_filtering(_c(change7d=4), Regime.CHOPPY, s).passes


def test_immediate_setup_levels(s):
    setup = calculate_swing_setup(_c(), Regime.TREND_UP, s)
    assert setup.action == TradeAction.BUY
    assert setup.entry_type == EntryType.IMMEDIATE
    assert setup.entry_price == 100.0
    # ATR 3% -> stop 2.4%, target max(3R, 1.5 ATR) = 7.2%
    assert setup.risk_percent == pytest.approx(2.4)
    assert setup.target_percent == pytest.approx(7.2)
    assert setup.stop_loss == pytest.approx(97.6)
    assert setup.target_price == pytest.approx(107.2)
    assert setup.risk_reward == pytest.approx(3.0)


def test_limit_setup_pulls_back(s):
    setup = calculate_swing_setup(_c(change1h=0.8), Regime.TREND_UP, s)
    assert setup.entry_type == EntryType.LIMIT
    assert setup.entry_price == pytest.approx(100 * (1 - 0.45 / 100))


def test_stop_is_clamped_to_band(s):
    tight = calculate_swing_setup(_c(atr14=1.0), Regime.TREND_UP, s)
    wide = calculate_swing_setup(_c(atr14=9.0), Regime.TREND_UP, s)
    assert tight.risk_percent == s.MIN_STOP_LOSS_PCT
    assert wide.risk_percent == s.MAX_STOP_LOSS_PCT
    assert wide.risk_reward >= s.MIN_RISK_REWARD


def test_sell_setup_in_downtrend(s):
    c = _c(change24h=-1.0, change7d=-6.0, change30d=-8.0)
    setup = calculate_swing_setup(c, Regime.TREND_DOWN, s)
    assert setup.action == TradeAction.SELL
    assert setup.target_price < setup.entry_price < setup.stop_loss


def test_no_setup_against_regime(s):
    c = _c(change24h=-1.0, change7d=-6.0)
    assert calculate_swing_setup(c, Regime.TREND_UP, s) is None


def test_probability_score_components():
    score = calculate_probability_score(_c(), Regime.TREND_UP, TradeAction.BUY)
    assert score == 100

    choppy = calculate_probability_score(
        _c(change7d=3, change24h=0.5, change30d=0, rsi14=60, atr14=5, marketCapRank=25),
        Regime.CHOPPY,
        TradeAction.BUY,
    )
    # 40 + 15 trend + 10 rsi + 4 volume + 5 atr - 10 choppy
    assert choppy == 64


def test_whale_adjusts_only_above_threshold():
    base = _c(change7d=3, change24h=0.5, change30d=0, rsi14=60)
    plain = calculate_probability_score(base, Regime.CHOPPY, TradeAction.BUY)
    strong = WhaleReading(WhaleIntent.ACCUMULATING, 80)
    weak = WhaleReading(WhaleIntent.ACCUMULATING, 50)
    against = WhaleReading(WhaleIntent.DISTRIBUTING, 90)

    assert calculate_probability_score(base, Regime.CHOPPY, TradeAction.BUY, strong) == plain + 10
    assert calculate_probability_score(base, Regime.CHOPPY, TradeAction.BUY, weak) == plain
    assert calculate_probability_score(base, Regime.CHOPPY, TradeAction.BUY, against) == plain - 15


def test_eta_is_clamped():
    assert expected_hours_to_target(_c(), 0.1) == 4.0
    assert expected_hours_to_target(_c(change24h=0, change7d=0, atr14=0.1), 50) == 168.0


def _universe():
    return [
        coin(id="a", symbol="AAA", marketCapRank=3),
        coin(id="b", symbol="BBB", marketCapRank=12, atr14=2.0),
        coin(id="c", symbol="CCC", marketCapRank=8, rsi14=70),
        coin(id="d", symbol="DDD", marketCapRank=40),
        coin(id="e", symbol="EEE", marketCapRank=9, volume24h=10_000_000),
        coin(id="f", symbol="FFF", marketCapRank=4, change24h=3.0, change7d=9.0),
    ]


def test_funnel_rejects_with_diagnostics(s):
    coins = [CoinSnapshot.from_payload(c) for c in _universe()]
    res = run_funnel(coins, Regime.TREND_UP, s)

    # DDD (rank) and EEE (volume) never enter the funnel
    assert res.scanned == 4
    assert [o.coin.symbol for o in res.opportunities][0] in {"AAA", "BBB", "FFF"}
    assert "CCC" not in [o.coin.symbol for o in res.opportunities]
    assert any(d.startswith("CCC: RSI at extreme") for d in res.diagnostics)


def test_funnel_is_deterministic_under_reordering(s):
    coins = [CoinSnapshot.from_payload(c) for c in _universe()]
    first = run_funnel(coins, Regime.TREND_UP, s)

    rng = random.Random(3)
    for _ in range(10):
        shuffled = list(coins)
        rng.shuffle(shuffled)
        again = run_funnel(shuffled, Regime.TREND_UP, s)
        assert [o.coin.id for o in again.opportunities] == [
            o.coin.id for o in first.opportunities
        ]
        assert [o.probability_score for o in again.opportunities] == [
            o.probability_score for o in first.opportunities
        ]

    scores = [o.probability_score for o in first.opportunities]
    assert scores == sorted(scores, reverse=True)
