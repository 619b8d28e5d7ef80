from __future__ import annotations

from typing import Optional

from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.intel.whale import WhaleReading
from app.runner.models import TradeAction

BASE_SCORE = 40
WHALE_ALIGNED_BONUS = 10
WHALE_OPPOSED_PENALTY = 15


def calculate_probability_score(
    coin: CoinSnapshot,
    regime: Regime,
    action: TradeAction,
    whale: Optional[WhaleReading] = None,
    whale_threshold: float = 70.0,
) -> int:
    """Weighted 0-100 heuristic score; deterministic for identical inputs."""
    if action == TradeAction.NO_TRADE:
        return 0

    score = BASE_SCORE

    # 1. Trend strength (+25 max)
    t7, t24, t30 = coin.change_7d, coin.change_24h, coin.change_30d
    if action == TradeAction.BUY:
        if t7 > 5 and t24 > 0:
            score += 20
        elif t7 > 2 and t24 > -1:
            score += 15
        elif t7 > 0:
            score += 8
        if t30 > 5:
            score += 5
    else:
        if t7 < -5 and t24 < 0:
            score += 20
        elif t7 < -2 and t24 < 1:
            score += 15
        elif t7 < 0:
            score += 8
        if t30 < -5:
            score += 5

    # 2. RSI proximity to neutral (+15 max)
    rsi_dev = abs(coin.rsi14 - 50)
    if rsi_dev <= 8:
        score += 15
    elif rsi_dev <= 15:
        score += 10
    elif rsi_dev <= 20:
        score += 5

    # 3. Volume confirmation (+10 max)
    if coin.volume_to_mcap > 0.08:
        score += 10
    elif coin.volume_to_mcap > 0.05:
        score += 7
    elif coin.volume_to_mcap > 0.03:
        score += 4

    # 4. Whale alignment
    if whale is not None and whale.confidence >= whale_threshold:
        if whale.supports(action.value):
            score += WHALE_ALIGNED_BONUS
        elif whale.opposes(action.value):
            score -= WHALE_OPPOSED_PENALTY

    # 5. Volatility sweet spot (+10 max)
    if 1.5 <= coin.atr14 <= 4:
        score += 10
    elif 1 <= coin.atr14 <= 6:
        score += 5

    # 6. Market-cap rank
    if coin.market_cap_rank <= 10:
        score += 5
    elif coin.market_cap_rank <= 20:
        score += 3

    # 7. Regime alignment
    if regime.is_up and action == TradeAction.BUY:
        score += 10
    elif regime == Regime.TREND_DOWN and action == TradeAction.SELL:
        score += 10
    elif regime == Regime.CHOPPY:
        score -= 10

    return max(0, min(100, int(score)))


def expected_hours_to_target(coin: CoinSnapshot, target_percent: float) -> float:
    """Hours to target from recent impulse speed, clamped to 4h..7d."""
    daily_range = coin.atr14 or 2.0
    recent = abs(coin.change_24h)
    weekly_avg = abs(coin.change_7d) / 7
    weighted = recent * 0.6 + weekly_avg * 0.4
    effective = max(weighted, daily_range * 0.3)
    if effective <= 0:
        return 168.0
    hours = target_percent / effective * 24
    return max(4.0, min(168.0, hours))
