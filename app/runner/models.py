# app/runner/models.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.core.timefmt import to_iso


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NO_TRADE = "NO_TRADE"


class EntryType(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    LIMIT = "LIMIT"


class TradeResult(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NOT_EXECUTED = "NOT_EXECUTED"


TERMINAL_RESULTS = frozenset(
    {TradeResult.SUCCESS, TradeResult.FAILED, TradeResult.NOT_EXECUTED}
)


@dataclass
class TradeRecord:
    id: str
    coin_id: str
    coin_symbol: str
    coin_name: str
    action: TradeAction
    entry_price: float
    target_price: float
    stop_loss: float
    entry_type: EntryType
    created_at: datetime
    result: TradeResult = TradeResult.PENDING
    entry_filled: bool = False
    filled_at: Optional[datetime] = None
    probability_score: Optional[int] = None
    confidence_score: Optional[int] = None
    whale_intent: Optional[str] = None
    regime: Optional[str] = None
    reasoning: str = ""
    exit_price: Optional[float] = None
    profit_loss_percent: Optional[float] = None
    closed_at: Optional[datetime] = None
    last_monitored_at: Optional[datetime] = None

    @property
    def is_filled(self) -> bool:
        return self.entry_type == EntryType.IMMEDIATE or self.entry_filled

    @property
    def risk_percent(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return abs(self.entry_price - self.stop_loss) / self.entry_price * 100.0

    @property
    def target_percent(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return abs(self.target_price - self.entry_price) / self.entry_price * 100.0

    @property
    def risk_reward(self) -> float:
        risk = abs(self.entry_price - self.stop_loss)
        if risk <= 0:
            return 0.0
        return abs(self.target_price - self.entry_price) / risk

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for k in ("action", "entry_type", "result"):
            d[k] = getattr(self, k).value
        for k in ("created_at", "filled_at", "closed_at", "last_monitored_at"):
            v = getattr(self, k)
            d[k] = to_iso(v) if v else None
        return d


@dataclass
class SystemState:
    mode: str = "paper"  # "paper" | "live"
    last_scan_at: Optional[datetime] = None
    last_scan_summary: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


@dataclass
class TradeProgress:
    current_pnl: float
    distance_to_target: float
    distance_to_stop: float
    hours_in_trade: float
    entry_filled: bool
    hours_until_timeout: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemPerformance:
    total_trades: int
    successful_trades: int
    failed_trades: int
    not_executed_trades: int
    accuracy_percent: float
    consecutive_losses: int
    capital_protection_enabled: bool
    capital_protection_reason: Optional[str]
    mode: str
    current_state: str
    active_trade_id: Optional[str]
    last_trade_closed_at: Optional[str]
    cooldown_ends_at: Optional[str]
    protection_ends_at: Optional[str]
    last_scan_at: Optional[str]
    last_trade_entry_price: Optional[float]
    last_trade_exit_price: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EngineDecision:
    """Single decision object returned by every engine invocation."""

    status: str
    action: str = TradeAction.NO_TRADE.value
    next_state: Optional[str] = None
    transitions: List[str] = field(default_factory=list)

    coin_id: str = ""
    coin_symbol: str = "WAIT"
    coin_name: str = ""
    coin_image: str = ""

    current_price: float = 0.0
    entry_price: float = 0.0
    target_price: float = 0.0
    stop_loss: float = 0.0
    target_percent: float = 0.0
    risk_percent: float = 0.0
    risk_reward: float = 0.0
    probability_score: int = 0
    confidence_score: int = 0
    expected_time_to_target: str = "N/A"
    entry_type: Optional[str] = None

    market_regime: Optional[str] = None
    whale_intent: Optional[str] = None
    whale_confidence: Optional[float] = None
    trend_alignment: str = "N/A"

    filters_applied: List[str] = field(default_factory=list)
    filters_passed: List[str] = field(default_factory=list)
    filters_skipped: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    reasoning: str = ""
    updated_at: Optional[str] = None
    next_scan_in: str = "N/A"
    time_until_next_action: str = "N/A"

    system_performance: Optional[SystemPerformance] = None
    active_trade: Optional[TradeRecord] = None
    trade_progress: Optional[TradeProgress] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            k: v
            for k, v in self.__dict__.items()
            if k not in ("system_performance", "active_trade", "trade_progress")
        }
        d["transitions"] = list(self.transitions)
        d["system_performance"] = (
            self.system_performance.to_dict() if self.system_performance else None
        )
        d["active_trade"] = self.active_trade.to_dict() if self.active_trade else None
        d["trade_progress"] = (
            self.trade_progress.to_dict() if self.trade_progress else None
        )
        return d
