from __future__ import annotations

from typing import Optional

from app.core.config import Settings
from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.runner.models import EntryType, TradeAction
from app.strategy.base import TradeSetup

STOP_ATR_MULTIPLE = 0.8
TARGET_ATR_MULTIPLE = 1.5
PULLBACK_ATR_FRACTION = 0.15
NEAR_ENTRY_MAX_1H = 0.5
NEAR_ENTRY_MAX_DRIFT = 2.0


def choose_action(coin: CoinSnapshot, regime: Regime) -> tuple[TradeAction, str]:
    bullish = coin.change_24h > -1 and coin.change_7d > 0
    bearish = coin.change_24h < 1 and coin.change_7d < 0

    if regime.is_up:
        if bullish:
            if regime == Regime.DIP_UP:
                return TradeAction.BUY, "SWING BUY - DIP IN UPTREND"
            return TradeAction.BUY, "SWING BUY - TREND CONTINUATION"
    elif regime == Regime.TREND_DOWN:
        if bearish:
            return TradeAction.SELL, "SWING SELL - DOWNTREND"
    else:
        # choppy: only clear directional outliers
        if bullish and coin.rsi14 < 50 and coin.change_7d > 3:
            return TradeAction.BUY, "SWING BUY - OVERSOLD BOUNCE"
        if bearish and coin.rsi14 > 50 and coin.change_7d < -3:
            return TradeAction.SELL, "SWING SELL - OVERBOUGHT FADE"

    return TradeAction.NO_TRADE, "UNCLEAR"


def is_near_good_entry(coin: CoinSnapshot) -> bool:
    """Small 1h move and 24h move in line with the weekly daily average."""
    return (
        abs(coin.change_1h) < NEAR_ENTRY_MAX_1H
        and abs(coin.change_24h - coin.change_7d / 7) < NEAR_ENTRY_MAX_DRIFT
    )


def calculate_swing_setup(
    coin: CoinSnapshot, regime: Regime, cfg: Settings
) -> Optional[TradeSetup]:
    """
    Entry/target/stop for one coin, or None when there is no directional
    setup or the risk/reward falls below MIN_RISK_REWARD.
    """
    action, trend_direction = choose_action(coin, regime)
    if action == TradeAction.NO_TRADE:
        return None

    price = coin.current_price
    atr = coin.atr14

    if is_near_good_entry(coin):
        entry_price = price
        entry_type = EntryType.IMMEDIATE
    else:
        pullback = atr * PULLBACK_ATR_FRACTION
        if action == TradeAction.BUY:
            entry_price = price * (1 - pullback / 100)
        else:
            entry_price = price * (1 + pullback / 100)
        entry_type = EntryType.LIMIT

    risk_percent = max(
        cfg.MIN_STOP_LOSS_PCT, min(cfg.MAX_STOP_LOSS_PCT, atr * STOP_ATR_MULTIPLE)
    )

    target_percent = min(
        risk_percent * cfg.PREFERRED_MAX_RR,
        max(
            risk_percent * cfg.MIN_RISK_REWARD,
            risk_percent * cfg.PREFERRED_MIN_RR,
            atr * TARGET_ATR_MULTIPLE,
        ),
    )

    if action == TradeAction.BUY:
        stop_loss = entry_price * (1 - risk_percent / 100)
        target_price = entry_price * (1 + target_percent / 100)
    else:
        stop_loss = entry_price * (1 + risk_percent / 100)
        target_price = entry_price * (1 - target_percent / 100)

    risk_reward = target_percent / risk_percent
    if risk_reward < cfg.MIN_RISK_REWARD:
        return None

    return TradeSetup(
        action=action,
        entry_price=entry_price,
        target_price=target_price,
        stop_loss=stop_loss,
        target_percent=target_percent,
        risk_percent=risk_percent,
        risk_reward=risk_reward,
        trend_direction=trend_direction,
        entry_type=entry_type,
    )
