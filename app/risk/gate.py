from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.risk.counters import DerivedCounters
from app.runner.models import TradeResult


@dataclass
class GateDecision:
    allowed: bool
    reason: str  # "ok" | "capital_protection" | "cooldown"
    until: Optional[datetime]
    consecutive_losses: int
    detail: str = ""


class SafetyGate:
    """
    Single source of truth for whether a new scan may run.

    - Capital protection: loss streak >= threshold, anchored at the last
      executed close; supersedes cooldown.
    - Cooldown: result-dependent pause after the last executed close.
      NOT_EXECUTED closes never reach here (they are not trades).
    """

    def __init__(
        self,
        *,
        max_consecutive_losses: int,
        protection_hours: float,
        cooldown_after_win_hours: float,
        cooldown_after_loss_hours: float,
    ):
        self.max_consecutive_losses = int(max_consecutive_losses)
        self.protection_hours = float(protection_hours)
        self.cooldown_after_win_hours = float(cooldown_after_win_hours)
        self.cooldown_after_loss_hours = float(cooldown_after_loss_hours)

    @classmethod
    def from_settings(cls, cfg) -> "SafetyGate":
        return cls(
            max_consecutive_losses=cfg.MAX_CONSECUTIVE_LOSSES,
            protection_hours=cfg.CAPITAL_PROTECTION_HOURS,
            cooldown_after_win_hours=cfg.COOLDOWN_AFTER_WIN_HOURS,
            cooldown_after_loss_hours=cfg.COOLDOWN_AFTER_LOSS_HOURS,
        )

    def protection_triggered(self, counters: DerivedCounters) -> bool:
        return counters.consecutive_losses >= self.max_consecutive_losses

    def protection_ends_at(self, counters: DerivedCounters) -> Optional[datetime]:
        if not self.protection_triggered(counters) or counters.last_closed_at is None:
            return None
        return counters.last_closed_at + timedelta(hours=self.protection_hours)

    def cooldown_hours(self, result: Optional[TradeResult]) -> float:
        if result == TradeResult.SUCCESS:
            return self.cooldown_after_win_hours
        if result == TradeResult.FAILED:
            return self.cooldown_after_loss_hours
        return 0.0

    def cooldown_ends_at(self, counters: DerivedCounters) -> Optional[datetime]:
        if counters.last_closed_at is None:
            return None
        hours = self.cooldown_hours(counters.last_result)
        if hours <= 0:
            return None
        return counters.last_closed_at + timedelta(hours=hours)

    def can_open(self, counters: DerivedCounters, now: datetime) -> GateDecision:
        streak = counters.consecutive_losses

        protection_end = self.protection_ends_at(counters)
        if protection_end is not None and now < protection_end:
            return GateDecision(
                allowed=False,
                reason="capital_protection",
                until=protection_end,
                consecutive_losses=streak,
                detail=f"{streak} consecutive losses - {self.protection_hours:g}h pause",
            )

        cooldown_end = self.cooldown_ends_at(counters)
        if cooldown_end is not None and now < cooldown_end:
            outcome = "win" if counters.last_result == TradeResult.SUCCESS else "loss"
            return GateDecision(
                allowed=False,
                reason="cooldown",
                until=cooldown_end,
                consecutive_losses=streak,
                detail=f"{self.cooldown_hours(counters.last_result):g}h cooldown after {outcome}",
            )

        return GateDecision(
            allowed=True, reason="ok", until=None, consecutive_losses=streak
        )
