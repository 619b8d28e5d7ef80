from __future__ import annotations

from typing import List

from app.core.config import Settings
from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.strategy.base import FilterResult

FILTERS_APPLIED = [
    "Trend alignment with regime (24h/7d/30d)",
    "Clean market structure (RSI 35-65)",
    "Stable volatility (no news spike)",
    "Volume confirmation (vol/mcap)",
    "Liquidity floor",
    "Market-cap rank ceiling",
]

RSI_LOW = 35.0
RSI_HIGH = 65.0
MAX_ABS_CHANGE_1H = 2.0
MAX_ABS_CHANGE_24H = 8.0
STRONG_VOL_MCAP = 0.04
MIN_VOL_MCAP = 0.025
CHOPPY_MIN_ABS_7D = 3.0


def is_bullish(coin: CoinSnapshot) -> bool:
    return coin.change_24h > -1 and coin.change_7d > 0 and coin.change_30d > -5


def is_bearish(coin: CoinSnapshot) -> bool:
    return coin.change_24h < 1 and coin.change_7d < 0 and coin.change_30d < 5


def in_universe(coin: CoinSnapshot, cfg: Settings) -> bool:
    return (
        coin.current_price > 0
        and coin.market_cap_rank <= cfg.MAX_RANK
        and coin.volume_24h >= cfg.MIN_VOLUME_24H
    )


def passes_setup_filtering(
    coin: CoinSnapshot, regime: Regime, cfg: Settings
) -> FilterResult:
    """All checks must pass; any single failure excludes the coin."""
    reasons: List[str] = []
    failures: List[str] = []

    # 1. Trend alignment
    if regime.is_up:
        if is_bullish(coin):
            reasons.append(f"Aligned with uptrend (7d: {coin.change_7d:+.1f}%)")
        else:
            failures.append(f"Not aligned with uptrend (7d: {coin.change_7d:.1f}%)")
    elif regime == Regime.TREND_DOWN:
        if is_bearish(coin):
            reasons.append(f"Aligned with downtrend (7d: {coin.change_7d:.1f}%)")
        else:
            failures.append("Not aligned with downtrend")
    else:
        if abs(coin.change_7d) < CHOPPY_MIN_ABS_7D:
            failures.append("Choppy market - unclear trend direction")
        else:
            reasons.append("Clear direction despite choppy regime")

    # 2. Structure
    if RSI_LOW <= coin.rsi14 <= RSI_HIGH:
        reasons.append(f"Clean RSI structure ({coin.rsi14:.1f})")
    else:
        failures.append(f"RSI at extreme levels ({coin.rsi14:.1f})")

    # 3. Volatility
    if abs(coin.change_1h) < MAX_ABS_CHANGE_1H and abs(coin.change_24h) < MAX_ABS_CHANGE_24H:
        reasons.append("Stable volatility - no news spike")
    else:
        failures.append(
            f"Volatile conditions (1h: {coin.change_1h:.1f}%, 24h: {coin.change_24h:.1f}%)"
        )

    # 4. Volume confirmation
    if coin.volume_to_mcap > STRONG_VOL_MCAP:
        reasons.append(
            f"Strong volume confirmation ({coin.volume_to_mcap * 100:.1f}% vol/mcap)"
        )
    elif coin.volume_to_mcap > MIN_VOL_MCAP:
        reasons.append("Adequate volume")
    else:
        failures.append(f"Low volume ({coin.volume_to_mcap * 100:.2f}% vol/mcap)")

    # 5. Liquidity
    vol_m = coin.volume_24h / 1_000_000
    if coin.volume_24h >= cfg.MIN_VOLUME_24H:
        reasons.append(f"Liquid (${vol_m:.0f}M vol)")
    else:
        failures.append(f"Illiquid (${vol_m:.0f}M vol)")

    passes = not failures
    return FilterResult(passes=passes, reasons=reasons if passes else failures)
