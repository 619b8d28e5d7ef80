from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from app.runner.models import TradeRecord, TradeResult


@dataclass(frozen=True)
class DerivedCounters:
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    not_executed_trades: int = 0
    accuracy_percent: float = 0.0
    consecutive_losses: int = 0
    last_closed_at: Optional[datetime] = None
    last_result: Optional[TradeResult] = None
    last_entry_price: Optional[float] = None
    last_exit_price: Optional[float] = None


def derive_counters(trades: Iterable[TradeRecord]) -> DerivedCounters:
    """
    Performance counters as a pure function of the closed ledger rows.

    Only SUCCESS/FAILED count as trades. NOT_EXECUTED rows are tallied
    separately and neither extend nor reset the loss streak. Rows are
    replayed in close order regardless of the order given.
    """
    closed = [
        t
        for t in trades
        if t.result != TradeResult.PENDING and t.closed_at is not None
    ]
    # stable: rows closed at the same instant keep their given (insertion) order
    closed.sort(key=lambda t: t.closed_at)

    success = failed = not_executed = streak = 0
    last: Optional[TradeRecord] = None

    for t in closed:
        if t.result == TradeResult.NOT_EXECUTED:
            not_executed += 1
            continue
        if t.result == TradeResult.SUCCESS:
            success += 1
            streak = 0
        elif t.result == TradeResult.FAILED:
            failed += 1
            streak += 1
        last = t

    total = success + failed
    accuracy = (success / total) * 100.0 if total > 0 else 0.0

    return DerivedCounters(
        total_trades=total,
        successful_trades=success,
        failed_trades=failed,
        not_executed_trades=not_executed,
        accuracy_percent=accuracy,
        consecutive_losses=streak,
        last_closed_at=last.closed_at if last else None,
        last_result=last.result if last else None,
        last_entry_price=last.entry_price if last else None,
        last_exit_price=last.exit_price if last else None,
    )
