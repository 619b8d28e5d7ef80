from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from app.core.config import Settings
from app.core.timefmt import format_duration
from app.intel.whale import WhaleReading
from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.strategy.base import ScoredOpportunity
from app.strategy.filters import in_universe, passes_setup_filtering
from app.strategy.scoring import calculate_probability_score, expected_hours_to_target
from app.strategy.setup import calculate_swing_setup

log = logging.getLogger("swingdesk.funnel")


@dataclass
class FunnelResult:
    regime: Regime
    scanned: int
    opportunities: List[ScoredOpportunity] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)


def rank_opportunities(opps: Sequence[ScoredOpportunity]) -> List[ScoredOpportunity]:
    return sorted(opps, key=lambda o: o.sort_key())


def run_funnel(
    coins: Sequence[CoinSnapshot],
    regime: Regime,
    cfg: Settings,
    whale: Optional[WhaleReading] = None,
) -> FunnelResult:
    """
    filter -> setup -> probability -> ETA, then rank.

    Diagnostics hold one "SYMBOL: reason" line per rejected coin, in the
    order the coins were given.
    """
    eligible = [c for c in coins if in_universe(c, cfg)]
    result = FunnelResult(regime=regime, scanned=len(eligible))
    qualified: List[ScoredOpportunity] = []

    for coin in eligible:
        filt = passes_setup_filtering(coin, regime, cfg)
        if not filt.passes:
            result.diagnostics.append(f"{coin.symbol}: {filt.reasons[0]}")
            continue

        setup = calculate_swing_setup(coin, regime, cfg)
        if setup is None:
            result.diagnostics.append(f"{coin.symbol}: No valid setup")
            continue

        score = calculate_probability_score(
            coin, regime, setup.action, whale, cfg.WHALE_CONFIDENCE_THRESHOLD
        )
        if score < cfg.MIN_PROBABILITY_SCORE:
            result.diagnostics.append(
                f"{coin.symbol}: Probability {score}% < {cfg.MIN_PROBABILITY_SCORE}% threshold"
            )
            continue

        eta = expected_hours_to_target(coin, setup.target_percent)
        qualified.append(
            ScoredOpportunity(
                coin=coin,
                setup=setup,
                probability_score=score,
                expected_hours_to_target=eta,
                reasons=list(filt.reasons),
            )
        )
        log.debug(
            "%s qualified: prob=%d%% eta=%s rr=%.1f",
            coin.symbol,
            score,
            format_duration(eta),
            setup.risk_reward,
        )

    result.opportunities = rank_opportunities(qualified)
    return result
