from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from app.market.snapshot import CoinSnapshot
from app.runner.models import EntryType, TradeAction


@dataclass(frozen=True)
class FilterResult:
    passes: bool
    reasons: List[str]  # qualifying reasons when passing, failures otherwise


@dataclass(frozen=True)
class TradeSetup:
    action: TradeAction
    entry_price: float
    target_price: float
    stop_loss: float
    target_percent: float
    risk_percent: float
    risk_reward: float
    trend_direction: str
    entry_type: EntryType


@dataclass
class ScoredOpportunity:
    coin: CoinSnapshot
    setup: TradeSetup
    probability_score: int
    expected_hours_to_target: float
    reasons: List[str] = field(default_factory=list)

    @property
    def action(self) -> TradeAction:
        return self.setup.action

    def sort_key(self):
        # probability desc, then fastest ETA, then rank and id for a total order
        return (
            -self.probability_score,
            self.expected_hours_to_target,
            self.coin.market_cap_rank,
            self.coin.id,
        )
