from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.timefmt import hours_between
from app.persistence.ledger import pnl_percent
from app.runner.models import TradeAction, TradeRecord, TradeResult


@dataclass(frozen=True)
class MonitorOutcome:
    """
    What the monitor concluded for one price observation.

    result is None while the trade stays open; otherwise the terminal
    result to write. filled_now marks a LIMIT entry that filled on this
    observation.
    """

    result: Optional[TradeResult]
    price: Optional[float]
    entry_filled: bool
    filled_now: bool
    pnl_percent: float
    distance_to_target: float
    distance_to_stop: float
    hours_in_trade: float
    hours_until_timeout: float
    reason: str

    @property
    def closes(self) -> bool:
        return self.result is not None


def entry_reached(action: TradeAction, entry_price: float, price: float) -> bool:
    """A limit fills when price crosses it in the trade's favour."""
    if action == TradeAction.BUY:
        return price <= entry_price
    return price >= entry_price


def exit_result(trade: TradeRecord, price: float) -> Optional[TradeResult]:
    """
    Target or stop, nothing else. Touching the level counts; a price on the
    safe side of the stop does not.
    """
    if trade.action == TradeAction.BUY:
        if price >= trade.target_price:
            return TradeResult.SUCCESS
        if price <= trade.stop_loss:
            return TradeResult.FAILED
        return None
    if price <= trade.target_price:
        return TradeResult.SUCCESS
    if price >= trade.stop_loss:
        return TradeResult.FAILED
    return None


def _distances(trade: TradeRecord, price: float) -> tuple[float, float]:
    if price <= 0:
        return 0.0, 0.0
    if trade.action == TradeAction.BUY:
        to_target = (trade.target_price - price) / price * 100.0
        to_stop = (price - trade.stop_loss) / price * 100.0
    else:
        to_target = (price - trade.target_price) / price * 100.0
        to_stop = (trade.stop_loss - price) / price * 100.0
    return to_target, to_stop


def evaluate_trade(
    trade: TradeRecord,
    price: Optional[float],
    now: datetime,
    entry_timeout_hours: float,
) -> MonitorOutcome:
    """
    One monitoring step for a PENDING trade.

    Order: limit fill, entry timeout (unfilled only), then target/stop on
    the same observation. A missing price skips fill and exit evaluation
    but the entry timeout still applies.
    """
    hours_in_trade = max(0.0, hours_between(trade.created_at, now))
    hours_until_timeout = max(0.0, entry_timeout_hours - hours_in_trade)

    filled = trade.is_filled
    filled_now = False

    if not filled and price is not None and price > 0:
        if entry_reached(trade.action, trade.entry_price, price):
            filled = True
            filled_now = True

    if not filled and hours_in_trade >= entry_timeout_hours:
        return MonitorOutcome(
            result=TradeResult.NOT_EXECUTED,
            price=price,
            entry_filled=False,
            filled_now=False,
            pnl_percent=0.0,
            distance_to_target=0.0,
            distance_to_stop=0.0,
            hours_in_trade=hours_in_trade,
            hours_until_timeout=0.0,
            reason="entry_timeout",
        )

    if price is None or price <= 0:
        return MonitorOutcome(
            result=None,
            price=None,
            entry_filled=filled,
            filled_now=False,
            pnl_percent=0.0,
            distance_to_target=0.0,
            distance_to_stop=0.0,
            hours_in_trade=hours_in_trade,
            hours_until_timeout=0.0 if filled else hours_until_timeout,
            reason="price_unavailable",
        )

    to_target, to_stop = _distances(trade, price)
    pnl = pnl_percent(trade.action, trade.entry_price, price) if filled else 0.0

    result = exit_result(trade, price) if filled else None
    if result == TradeResult.SUCCESS:
        reason = "target_hit"
    elif result == TradeResult.FAILED:
        reason = "stop_hit"
    elif filled:
        reason = "holding"
    else:
        reason = "awaiting_entry"

    return MonitorOutcome(
        result=result,
        price=price,
        entry_filled=filled,
        filled_now=filled_now,
        pnl_percent=pnl,
        distance_to_target=0.0 if result else to_target,
        distance_to_stop=0.0 if result else to_stop,
        hours_in_trade=hours_in_trade,
        hours_until_timeout=0.0 if filled else hours_until_timeout,
        reason=reason,
    )


def validate_levels(action: TradeAction, entry: float, stop: float, target: float) -> None:
    """
    BUY:  stop < entry < target
    SELL: target < entry < stop
    Raises ValueError if invalid.
    """
    if action == TradeAction.BUY:
        if not (stop < entry < target):
            raise ValueError("Invalid stop/target for BUY")
        return
    if action == TradeAction.SELL:
        if not (target < entry < stop):
            raise ValueError("Invalid stop/target for SELL")
        return
    raise ValueError(f"Invalid action: {action}")
