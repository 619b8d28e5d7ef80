# app/policy/engine_policy.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional

from app.risk.counters import DerivedCounters
from app.risk.gate import SafetyGate


class EngineState(str, Enum):
    WAITING = "WAITING"
    TRADE_READY = "TRADE_READY"
    TRADE_ACTIVE = "TRADE_ACTIVE"
    TRADE_CLOSED = "TRADE_CLOSED"
    NOT_EXECUTED = "NOT_EXECUTED"
    COOLDOWN = "COOLDOWN"
    CAPITAL_PROTECTION = "CAPITAL_PROTECTION"


TRANSITIONS: Dict[EngineState, FrozenSet[EngineState]] = {
    EngineState.WAITING: frozenset(
        {EngineState.WAITING, EngineState.TRADE_READY}
    ),
    EngineState.TRADE_READY: frozenset({EngineState.TRADE_ACTIVE}),
    EngineState.TRADE_ACTIVE: frozenset(
        {EngineState.TRADE_ACTIVE, EngineState.TRADE_CLOSED, EngineState.NOT_EXECUTED}
    ),
    EngineState.TRADE_CLOSED: frozenset(
        {EngineState.COOLDOWN, EngineState.CAPITAL_PROTECTION}
    ),
    EngineState.NOT_EXECUTED: frozenset({EngineState.WAITING}),
    EngineState.COOLDOWN: frozenset({EngineState.COOLDOWN, EngineState.WAITING}),
    EngineState.CAPITAL_PROTECTION: frozenset(
        {EngineState.CAPITAL_PROTECTION, EngineState.COOLDOWN, EngineState.WAITING}
    ),
}


class InvalidTransition(RuntimeError):
    pass


def can_transition(src: EngineState, dst: EngineState) -> bool:
    return dst in TRANSITIONS[src]


def assert_transition(src: EngineState, dst: EngineState) -> EngineState:
    if not can_transition(src, dst):
        raise InvalidTransition(f"{src.value} -> {dst.value}")
    return dst


class Step(str, Enum):
    MONITOR = "MONITOR"
    PROTECT = "PROTECT"
    COOLDOWN = "COOLDOWN"
    THROTTLE = "THROTTLE"
    SCAN = "SCAN"


@dataclass
class PolicyInputs:
    # ledger view
    has_pending_trade: bool
    counters: DerivedCounters
    last_scan_at: Optional[datetime]

    # context
    now: datetime
    scan_interval_minutes: int


@dataclass
class PolicyResult:
    step: Step
    state: EngineState
    until: Optional[datetime]
    reason: str


def scan_due(last_scan_at: Optional[datetime], now: datetime, interval_minutes: int) -> bool:
    if interval_minutes <= 0:
        return True
    if last_scan_at is None:
        return True
    return now - last_scan_at >= timedelta(minutes=int(interval_minutes))


def next_scan_at(last_scan_at: Optional[datetime], interval_minutes: int) -> Optional[datetime]:
    if last_scan_at is None:
        return None
    return last_scan_at + timedelta(minutes=int(interval_minutes))


def resting_state(counters: DerivedCounters, gate: SafetyGate, now: datetime) -> EngineState:
    """State the system is in when no trade is pending."""
    decision = gate.can_open(counters, now)
    if decision.reason == "capital_protection":
        return EngineState.CAPITAL_PROTECTION
    if decision.reason == "cooldown":
        return EngineState.COOLDOWN
    return EngineState.WAITING


def decide(inp: PolicyInputs, gate: SafetyGate) -> PolicyResult:
    """
    Pure decision for one invocation, in strict order:
      1. pending trade       -> MONITOR
      2. capital protection  -> PROTECT
      3. cooldown            -> COOLDOWN
      4. scan throttle       -> THROTTLE
      5. otherwise           -> SCAN

    The engine performs the side effects for the returned step.
    """
    if inp.has_pending_trade:
        return PolicyResult(Step.MONITOR, EngineState.TRADE_ACTIVE, None, "active_trade")

    gd = gate.can_open(inp.counters, inp.now)
    if gd.reason == "capital_protection":
        return PolicyResult(Step.PROTECT, EngineState.CAPITAL_PROTECTION, gd.until, gd.detail)
    if gd.reason == "cooldown":
        return PolicyResult(Step.COOLDOWN, EngineState.COOLDOWN, gd.until, gd.detail)

    if not scan_due(inp.last_scan_at, inp.now, inp.scan_interval_minutes):
        return PolicyResult(
            Step.THROTTLE,
            EngineState.WAITING,
            next_scan_at(inp.last_scan_at, inp.scan_interval_minutes),
            "scan_interval_not_elapsed",
        )

    return PolicyResult(Step.SCAN, EngineState.WAITING, None, "scan_due")
