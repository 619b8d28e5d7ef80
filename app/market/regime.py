from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Sequence

from app.market.snapshot import CoinSnapshot


class Regime(str, Enum):
    TREND_UP = "TREND_UP"
    DIP_UP = "DIP_UP"
    TREND_DOWN = "TREND_DOWN"
    CHOPPY = "CHOPPY"

    @property
    def is_up(self) -> bool:
        return self in (Regime.TREND_UP, Regime.DIP_UP)


def _find(coins: Iterable[CoinSnapshot], symbol: str) -> Optional[CoinSnapshot]:
    s = symbol.upper()
    for c in coins:
        if c.symbol.upper() == s:
            return c
    return None


def detect_regime(
    coins: Sequence[CoinSnapshot], reference: Sequence[str] = ("BTC", "ETH")
) -> Regime:
    """
    Coarse market direction from two reference assets.

    TREND_UP:   both up >2% on 7d and positive on 24h
    DIP_UP:     both up >2% on 7d, lead asset pulling back (24h < -1 or 1h < -0.5)
    TREND_DOWN: both down >2% on 7d and negative on 24h
    CHOPPY:     anything else, including a missing reference asset
    """
    if len(reference) < 2:
        return Regime.CHOPPY

    lead = _find(coins, reference[0])
    other = _find(coins, reference[1])
    if lead is None or other is None:
        return Regime.CHOPPY

    if lead.change_7d > 2 and other.change_7d > 2:
        if lead.change_24h > 0 and other.change_24h > 0:
            return Regime.TREND_UP
        if lead.change_24h < -1 or lead.change_1h < -0.5:
            return Regime.DIP_UP

    if (
        lead.change_7d < -2
        and other.change_7d < -2
        and lead.change_24h < 0
        and other.change_24h < 0
    ):
        return Regime.TREND_DOWN

    return Regime.CHOPPY
