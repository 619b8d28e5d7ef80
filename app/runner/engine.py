from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.core.config import Settings, settings
from app.core.errors import EngineError
from app.core.timefmt import format_duration, hours_between, to_iso, utc_now
from app.execution.monitor import MonitorOutcome, evaluate_trade, validate_levels
from app.intel.reranker import (
    RerankContext,
    Reranker,
    RerankResult,
    Selection,
    apply_rerank,
    build_reranker,
)
from app.intel.whale import WhaleReading, WhaleSource, build_whale_source
from app.market.regime import Regime, detect_regime
from app.market.snapshot import MarketSnapshot, SnapshotReader, SnapshotSource
from app.ops.context import clear_invocation_id, set_invocation_id
from app.persistence.audit import Audit
from app.persistence.db import DB
from app.persistence.ledger import Ledger
from app.persistence.state_store import StateStore
from app.policy.engine_policy import (
    EngineState,
    PolicyInputs,
    PolicyResult,
    Step,
    assert_transition,
    decide,
    resting_state,
)
from app.risk.counters import DerivedCounters, derive_counters
from app.risk.gate import SafetyGate
from app.runner.models import (
    EngineDecision,
    SystemPerformance,
    SystemState,
    TradeProgress,
    TradeRecord,
    TradeResult,
)
from app.strategy.base import ScoredOpportunity
from app.strategy.filters import FILTERS_APPLIED
from app.strategy.funnel import FunnelResult, run_funnel

log = logging.getLogger("swingdesk.engine")


class DecisionEngine:
    """
    Per-invocation state machine.

    Safe to call arbitrarily often and from several processes at once: the
    only persisted writes are the scan stamp, the compare-and-create trade
    insert and the monitor's updates to the one PENDING row.
    """

    def __init__(
        self,
        *,
        cfg: Settings,
        db: DB,
        snapshots: SnapshotSource,
        whale: Optional[WhaleSource] = None,
        reranker: Optional[Reranker] = None,
        audit: Optional[Audit] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cfg = cfg
        self.db = db
        self.ledger = Ledger(db)
        self.store = StateStore(db, default_mode=cfg.EXECUTION_MODE)
        self.audit = audit or Audit(db, cfg.AUDIT_JSONL_PATH)
        self.snapshots = snapshots
        self.whale = whale or build_whale_source(cfg)
        self.reranker = reranker or build_reranker(cfg)
        self.gate = SafetyGate.from_settings(cfg)
        self.clock = clock

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self, now: Optional[datetime] = None) -> EngineDecision:
        set_invocation_id(str(uuid.uuid4()))
        try:
            now = now or self.clock()

            # 1. active-trade guard
            pending = self.ledger.get_pending()

            # 2. counters, always fresh
            counters = derive_counters(self.ledger.closed_trades())
            sys_state = self.store.load()

            policy = decide(
                PolicyInputs(
                    has_pending_trade=pending is not None,
                    counters=counters,
                    last_scan_at=sys_state.last_scan_at,
                    now=now,
                    scan_interval_minutes=self.cfg.SCAN_INTERVAL_MINUTES,
                ),
                self.gate,
            )
            log.info(
                "invocation step=%s state=%s trades=%d win_rate=%.1f%% streak=%d",
                policy.step.value,
                policy.state.value,
                counters.total_trades,
                counters.accuracy_percent,
                counters.consecutive_losses,
            )
            self.audit.event(
                "INVOCATION",
                action=policy.step.value,
                trade_id=pending.id if pending else None,
                details={"state": policy.state.value, "reason": policy.reason},
            )

            if policy.step == Step.MONITOR:
                return self._monitor(pending, counters, sys_state, now)
            if policy.step == Step.PROTECT:
                return self._protected(policy, counters, sys_state, now)
            if policy.step == Step.COOLDOWN:
                return self._cooldown(policy, counters, sys_state, now)
            if policy.step == Step.THROTTLE:
                return self._throttled(policy, counters, sys_state, now)
            return self._scan(counters, sys_state, now)
        except EngineError as e:
            log.error("invocation failed, no trade decision made: %s", e)
            raise
        finally:
            clear_invocation_id()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def performance(self, now: Optional[datetime] = None) -> SystemPerformance:
        now = now or self.clock()
        pending = self.ledger.get_pending()
        counters = derive_counters(self.ledger.closed_trades())
        sys_state = self.store.load()
        if pending is not None:
            state = EngineState.TRADE_ACTIVE
        else:
            state = resting_state(counters, self.gate, now)
        return self._performance(
            counters, sys_state, state, pending.id if pending else None, now
        )

    def _performance(
        self,
        counters: DerivedCounters,
        sys_state: SystemState,
        state: EngineState,
        active_trade_id: Optional[str],
        now: datetime,
    ) -> SystemPerformance:
        protection_end = self.gate.protection_ends_at(counters)
        protection_on = protection_end is not None and now < protection_end
        cooldown_end = self.gate.cooldown_ends_at(counters)

        return SystemPerformance(
            total_trades=counters.total_trades,
            successful_trades=counters.successful_trades,
            failed_trades=counters.failed_trades,
            not_executed_trades=counters.not_executed_trades,
            accuracy_percent=round(counters.accuracy_percent, 2),
            consecutive_losses=counters.consecutive_losses,
            capital_protection_enabled=protection_on,
            capital_protection_reason=(
                f"{counters.consecutive_losses} consecutive losses - "
                f"{self.cfg.CAPITAL_PROTECTION_HOURS:g}h pause"
                if protection_on
                else None
            ),
            mode=sys_state.mode,
            current_state=state.value,
            active_trade_id=active_trade_id,
            last_trade_closed_at=to_iso(counters.last_closed_at) if counters.last_closed_at else None,
            cooldown_ends_at=to_iso(cooldown_end) if cooldown_end else None,
            protection_ends_at=to_iso(protection_end) if protection_end else None,
            last_scan_at=to_iso(sys_state.last_scan_at) if sys_state.last_scan_at else None,
            last_trade_entry_price=counters.last_entry_price,
            last_trade_exit_price=counters.last_exit_price,
        )

    # ------------------------------------------------------------------
    # Blocked states
    # ------------------------------------------------------------------
    def _protected(
        self,
        policy: PolicyResult,
        counters: DerivedCounters,
        sys_state: SystemState,
        now: datetime,
    ) -> EngineDecision:
        remaining = hours_between(now, policy.until) if policy.until else 0.0
        return EngineDecision(
            status=EngineState.CAPITAL_PROTECTION.value,
            next_state=EngineState.WAITING.value,
            transitions=[EngineState.CAPITAL_PROTECTION.value],
            coin_name="Protected",
            filters_applied=list(FILTERS_APPLIED),
            filters_skipped=[f"Capital protection - {self.cfg.CAPITAL_PROTECTION_HOURS:g}h pause"],
            reasoning=(
                f"CAPITAL PROTECTION MODE. {policy.reason}. "
                f"Re-evaluating market conditions in {format_duration(remaining)}. "
                "Probability first > trade frequency."
            ),
            next_scan_in=format_duration(remaining),
            time_until_next_action=format_duration(remaining),
            system_performance=self._performance(
                counters, sys_state, EngineState.CAPITAL_PROTECTION, None, now
            ),
        )

    def _cooldown(
        self,
        policy: PolicyResult,
        counters: DerivedCounters,
        sys_state: SystemState,
        now: datetime,
    ) -> EngineDecision:
        remaining = hours_between(now, policy.until) if policy.until else 0.0
        return EngineDecision(
            status=EngineState.COOLDOWN.value,
            next_state=EngineState.WAITING.value,
            transitions=[EngineState.COOLDOWN.value],
            coin_name="Cooldown",
            filters_applied=list(FILTERS_APPLIED),
            filters_skipped=["Cooldown period active"],
            reasoning=(
                f"COOLDOWN active ({policy.reason}): {format_duration(remaining)} remaining. "
                "Trade less, but trade better."
            ),
            next_scan_in=format_duration(remaining),
            time_until_next_action=format_duration(remaining),
            system_performance=self._performance(
                counters, sys_state, EngineState.COOLDOWN, None, now
            ),
        )

    def _throttled(
        self,
        policy: PolicyResult,
        counters: DerivedCounters,
        sys_state: SystemState,
        now: datetime,
    ) -> EngineDecision:
        remaining = hours_between(now, policy.until) if policy.until else 0.0
        summary: Dict[str, Any] = sys_state.last_scan_summary or {}
        last_reasoning = summary.get("reasoning") or "No scan summary recorded."
        return EngineDecision(
            status=EngineState.WAITING.value,
            transitions=[EngineState.WAITING.value],
            market_regime=summary.get("regime"),
            whale_intent=summary.get("whale_intent"),
            whale_confidence=summary.get("whale_confidence"),
            filters_applied=list(FILTERS_APPLIED),
            diagnostics=list(summary.get("diagnostics") or []),
            reasoning=f"Scan throttled. {last_reasoning}",
            updated_at=summary.get("snapshot_updated_at"),
            next_scan_in=format_duration(remaining),
            time_until_next_action=format_duration(remaining),
            system_performance=self._performance(
                counters, sys_state, EngineState.WAITING, None, now
            ),
        )

    # ------------------------------------------------------------------
    # Trade monitor
    # ------------------------------------------------------------------
    def _monitor(
        self,
        trade: TradeRecord,
        counters: DerivedCounters,
        sys_state: SystemState,
        now: datetime,
    ) -> EngineDecision:
        snap = self.snapshots.load(now)
        regime = detect_regime(snap.coins, self.cfg.REFERENCE_SYMBOLS)
        coin = snap.find(trade.coin_id)
        price = coin.current_price if coin is not None else None
        if coin is None:
            log.warning("traded coin %s missing from snapshot", trade.coin_id)

        outcome = evaluate_trade(trade, price, now, self.cfg.ENTRY_TIMEOUT_HOURS)

        if outcome.filled_now:
            if self.ledger.mark_filled(trade.id, now):
                trade.entry_filled = True
                trade.filled_at = now
                log.info("entry FILLED %s at %.6g", trade.coin_symbol, price)
                self.audit.event(
                    "TRADE_FILLED",
                    action=trade.action.value,
                    trade_id=trade.id,
                    details={"price": price, "limit": trade.entry_price},
                )

        if outcome.closes:
            return self._close(trade, outcome, snap, regime, sys_state, now)

        self.ledger.touch_monitored(trade.id, now)
        trade.last_monitored_at = now

        if outcome.reason == "price_unavailable":
            reasoning = (
                f"MONITORING {trade.action.value} {trade.coin_symbol} | price unavailable in "
                f"snapshot, levels not evaluated"
            )
        elif outcome.entry_filled:
            reasoning = (
                f"HOLDING {trade.action.value} {trade.coin_symbol} | "
                f"P&L: {outcome.pnl_percent:+.2f}% | "
                f"Target: {outcome.distance_to_target:.2f}% away | "
                f"Stop: {outcome.distance_to_stop:.2f}% buffer | "
                f"Duration: {format_duration(outcome.hours_in_trade)}"
            )
        else:
            reasoning = (
                f"WAITING FOR ENTRY | Limit order at ${trade.entry_price:.2f} | "
                f"Current: ${price:.2f} | "
                f"Timeout in {format_duration(outcome.hours_until_timeout)}"
            )

        decision = self._trade_decision(
            trade, outcome, snap, regime, EngineState.TRADE_ACTIVE
        )
        decision.transitions = [EngineState.TRADE_ACTIVE.value]
        decision.reasoning = reasoning
        decision.next_scan_in = "After trade closes"
        decision.time_until_next_action = (
            f"Monitoring every {self.cfg.MONITOR_INTERVAL_MINUTES}m"
        )
        decision.system_performance = self._performance(
            counters, sys_state, EngineState.TRADE_ACTIVE, trade.id, now
        )
        decision.active_trade = trade
        decision.trade_progress = TradeProgress(
            current_pnl=outcome.pnl_percent,
            distance_to_target=outcome.distance_to_target,
            distance_to_stop=outcome.distance_to_stop,
            hours_in_trade=outcome.hours_in_trade,
            entry_filled=outcome.entry_filled,
            hours_until_timeout=outcome.hours_until_timeout,
        )
        return decision

    def _close(
        self,
        trade: TradeRecord,
        outcome: MonitorOutcome,
        snap: MarketSnapshot,
        regime: Regime,
        sys_state: SystemState,
        now: datetime,
    ) -> EngineDecision:
        if not self.ledger.close(trade, outcome.result, outcome.price, now):
            log.info("trade %s was closed by a concurrent invocation", trade.id)

        # report whatever the ledger now holds, and re-derive from it
        stored = self.ledger.get(trade.id) or trade
        counters = derive_counters(self.ledger.closed_trades())

        if stored.result == TradeResult.NOT_EXECUTED:
            status = assert_transition(EngineState.TRADE_ACTIVE, EngineState.NOT_EXECUTED)
            next_state = assert_transition(status, EngineState.WAITING)
            reasoning = (
                f"Trade NOT EXECUTED. Entry price ${stored.entry_price:.2f} not reached within "
                f"{self.cfg.ENTRY_TIMEOUT_HOURS:g}h timeout. Missing a trade is acceptable. Resuming scan."
            )
            until_next = "Next scan on schedule"
        else:
            status = assert_transition(EngineState.TRADE_ACTIVE, EngineState.TRADE_CLOSED)
            if self.gate.protection_triggered(counters):
                next_state = assert_transition(status, EngineState.CAPITAL_PROTECTION)
                pause_h = self.cfg.CAPITAL_PROTECTION_HOURS
                pause_label = "capital protection"
            else:
                next_state = assert_transition(status, EngineState.COOLDOWN)
                pause_h = self.gate.cooldown_hours(stored.result)
                pause_label = "cooldown"

            pnl = stored.profit_loss_percent or 0.0
            r_multiple = pnl / stored.risk_percent if stored.risk_percent > 0 else 0.0
            hit = "Target" if stored.result == TradeResult.SUCCESS else "Stop loss"
            exit_px = stored.exit_price if stored.exit_price is not None else 0.0
            reasoning = (
                f"Trade CLOSED: {stored.result.value}. {hit} hit at ${exit_px:.2f}. "
                f"P&L: {pnl:+.2f}% ({r_multiple:.1f}R). "
                f"Duration: {format_duration(outcome.hours_in_trade)}. Entering {pause_label}."
            )
            until_next = format_duration(pause_h)

        log.info(
            "trade %s %s %s closed %s",
            stored.id,
            stored.action.value,
            stored.coin_symbol,
            stored.result.value,
        )
        self.audit.event(
            "TRADE_CLOSED",
            action=stored.result.value,
            trade_id=stored.id,
            details={
                "exit_price": stored.exit_price,
                "profit_loss_percent": stored.profit_loss_percent,
                "reason": outcome.reason,
                "next_state": next_state.value,
            },
        )

        decision = self._trade_decision(stored, outcome, snap, regime, status)
        decision.next_state = next_state.value
        decision.transitions = [EngineState.TRADE_ACTIVE.value, status.value]
        decision.reasoning = reasoning
        decision.time_until_next_action = until_next
        decision.next_scan_in = until_next
        decision.system_performance = self._performance(
            counters, sys_state, next_state, None, now
        )
        decision.active_trade = stored
        decision.trade_progress = TradeProgress(
            current_pnl=stored.profit_loss_percent or 0.0,
            distance_to_target=0.0,
            distance_to_stop=0.0,
            hours_in_trade=outcome.hours_in_trade,
            entry_filled=outcome.entry_filled,
            hours_until_timeout=0.0,
        )
        return decision

    def _trade_decision(
        self,
        trade: TradeRecord,
        outcome: MonitorOutcome,
        snap: MarketSnapshot,
        regime: Regime,
        status: EngineState,
    ) -> EngineDecision:
        coin = snap.find(trade.coin_id)
        return EngineDecision(
            status=status.value,
            action=trade.action.value,
            coin_id=trade.coin_id,
            coin_symbol=trade.coin_symbol,
            coin_name=trade.coin_name,
            coin_image=coin.image if coin else "",
            current_price=outcome.price or 0.0,
            entry_price=trade.entry_price,
            target_price=trade.target_price,
            stop_loss=trade.stop_loss,
            target_percent=trade.target_percent,
            risk_percent=trade.risk_percent,
            risk_reward=trade.risk_reward,
            probability_score=trade.probability_score or 0,
            confidence_score=trade.confidence_score or 0,
            entry_type=trade.entry_type.value,
            market_regime=regime.value,
            whale_intent=trade.whale_intent,
            filters_applied=list(FILTERS_APPLIED),
            updated_at=to_iso(snap.updated_at),
        )

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------
    def _read_whale(self) -> Optional[WhaleReading]:
        try:
            reading = self.whale.read()
        except Exception:  # collaborator boundary: never fail the invocation
            log.exception("whale source raised; proceeding without")
            return None
        if reading is not None:
            log.info("whale: %s (%.0f%%)", reading.intent.value, reading.confidence)
        return reading

    def _select(
        self,
        funnel: FunnelResult,
        counters: DerivedCounters,
    ) -> Selection:
        if not funnel.opportunities:
            return Selection(None, "no opportunities")

        top = funnel.opportunities[: max(1, self.cfg.RERANK_TOP_N)]
        ctx = RerankContext(
            regime=funnel.regime.value,
            accuracy_percent=counters.accuracy_percent,
            consecutive_losses=counters.consecutive_losses,
            total_trades=counters.total_trades,
        )
        try:
            result = self.reranker.rank(top, ctx)
        except Exception:  # collaborator boundary: never fail the invocation
            log.exception("re-ranker raised; falling back to funnel ranking")
            result = RerankResult.unavailable("error")

        return apply_rerank(
            top,
            result,
            self.cfg.RERANK_MAX_ADJUSTMENT,
            self.cfg.MIN_PROBABILITY_SCORE,
        )

    def _scan(
        self, counters: DerivedCounters, sys_state: SystemState, now: datetime
    ) -> EngineDecision:
        snap = self.snapshots.load(now)
        regime = detect_regime(snap.coins, self.cfg.REFERENCE_SYMBOLS)
        whale = self._read_whale()
        funnel = run_funnel(snap.coins, regime, self.cfg, whale)
        selection = self._select(funnel, counters)

        log.info(
            "scan: regime=%s scanned=%d qualified=%d selection=%s",
            regime.value,
            funnel.scanned,
            len(funnel.opportunities),
            selection.opportunity.coin.symbol if selection.opportunity else "none",
        )

        diagnostics = list(funnel.diagnostics)
        if selection.vetoed:
            diagnostics.append(selection.note)

        waiting_reasoning = (
            f"WAITING. No qualifying trade found. Scanned {funnel.scanned} coins in "
            f"{regime.value} regime. Min probability: {self.cfg.MIN_PROBABILITY_SCORE}%. "
            "Missing trades is better than bad trades."
        )
        if selection.vetoed:
            waiting_reasoning = (
                f"WAITING. {len(funnel.opportunities)} candidate(s) vetoed by review "
                f"({selection.note}). Missing trades is better than bad trades."
            )

        summary = {
            "regime": regime.value,
            "scanned": funnel.scanned,
            "qualified": len(funnel.opportunities),
            "diagnostics": diagnostics,
            "reasoning": waiting_reasoning
            if selection.opportunity is None
            else f"Last scan selected {selection.opportunity.coin.symbol}.",
            "snapshot_updated_at": to_iso(snap.updated_at),
            "whale_intent": whale.intent.value if whale else None,
            "whale_confidence": whale.confidence if whale else None,
        }
        self.store.record_scan(now, summary)
        sys_state.last_scan_at = now
        sys_state.last_scan_summary = summary

        self.audit.event(
            "SCAN",
            action="SELECTED" if selection.opportunity else "NONE",
            details={
                "regime": regime.value,
                "scanned": funnel.scanned,
                "qualified": len(funnel.opportunities),
                "selection": selection.note,
            },
        )

        if selection.opportunity is None:
            return self._waiting_after_scan(
                counters, sys_state, snap, regime, whale, diagnostics, waiting_reasoning, now
            )

        opp = selection.opportunity
        validate_levels(
            opp.action, opp.setup.entry_price, opp.setup.stop_loss, opp.setup.target_price
        )
        reasoning = self._selection_reasoning(opp, funnel.opportunities, whale, selection.note)
        record = TradeRecord(
            id=str(uuid.uuid4()),
            coin_id=opp.coin.id,
            coin_symbol=opp.coin.symbol,
            coin_name=opp.coin.name,
            action=opp.action,
            entry_price=opp.setup.entry_price,
            target_price=opp.setup.target_price,
            stop_loss=opp.setup.stop_loss,
            entry_type=opp.setup.entry_type,
            created_at=now,
            probability_score=opp.probability_score,
            confidence_score=opp.probability_score,
            whale_intent=whale.intent.value if whale else None,
            regime=regime.value,
            reasoning=(
                f"{opp.setup.entry_type.value} entry | Prob: {opp.probability_score}% | "
                f"ETA: {format_duration(opp.expected_hours_to_target)} | {reasoning}"
            ),
            last_monitored_at=now,
        )

        created = self.ledger.create_pending(record)
        if created is None:
            # lost the compare-and-create race: behave as if nothing qualified
            self.audit.event(
                "CREATE_ABORTED",
                action=opp.action.value,
                details={"coin_id": opp.coin.id, "reason": "pending_trade_exists"},
            )
            return self._waiting_after_scan(
                counters, sys_state, snap, regime, whale, diagnostics, waiting_reasoning, now
            )

        transitions = [EngineState.WAITING]
        transitions.append(assert_transition(EngineState.WAITING, EngineState.TRADE_READY))
        transitions.append(
            assert_transition(EngineState.TRADE_READY, EngineState.TRADE_ACTIVE)
        )

        log.info(
            "TRADE OPENED: %s %s @ %.6g | prob=%d%% | eta=%s",
            created.action.value,
            created.coin_symbol,
            created.entry_price,
            opp.probability_score,
            format_duration(opp.expected_hours_to_target),
        )
        self.audit.event(
            "TRADE_OPENED",
            action=created.action.value,
            trade_id=created.id,
            details={
                "coin_id": created.coin_id,
                "entry_price": created.entry_price,
                "target_price": created.target_price,
                "stop_loss": created.stop_loss,
                "entry_type": created.entry_type.value,
                "probability": opp.probability_score,
            },
        )

        immediate = created.is_filled
        return EngineDecision(
            status=EngineState.TRADE_ACTIVE.value,
            action=created.action.value,
            transitions=[s.value for s in transitions],
            coin_id=created.coin_id,
            coin_symbol=created.coin_symbol,
            coin_name=created.coin_name,
            coin_image=opp.coin.image,
            current_price=opp.coin.current_price,
            entry_price=created.entry_price,
            target_price=created.target_price,
            stop_loss=created.stop_loss,
            target_percent=opp.setup.target_percent,
            risk_percent=opp.setup.risk_percent,
            risk_reward=opp.setup.risk_reward,
            probability_score=opp.probability_score,
            confidence_score=opp.probability_score,
            expected_time_to_target=format_duration(opp.expected_hours_to_target),
            entry_type=created.entry_type.value,
            market_regime=regime.value,
            whale_intent=whale.intent.value if whale else None,
            whale_confidence=whale.confidence if whale else None,
            trend_alignment=opp.setup.trend_direction,
            filters_applied=list(FILTERS_APPLIED),
            filters_passed=list(opp.reasons),
            diagnostics=diagnostics,
            reasoning=reasoning,
            updated_at=to_iso(snap.updated_at),
            next_scan_in="After trade closes",
            time_until_next_action=(
                f"Monitoring every {self.cfg.MONITOR_INTERVAL_MINUTES}m"
                if immediate
                else f"Waiting for entry fill (timeout: {self.cfg.ENTRY_TIMEOUT_HOURS:g}h)"
            ),
            system_performance=self._performance(
                counters, sys_state, EngineState.TRADE_ACTIVE, created.id, now
            ),
            active_trade=created,
            trade_progress=TradeProgress(
                current_pnl=0.0,
                distance_to_target=opp.setup.target_percent,
                distance_to_stop=opp.setup.risk_percent,
                hours_in_trade=0.0,
                entry_filled=immediate,
                hours_until_timeout=0.0 if immediate else self.cfg.ENTRY_TIMEOUT_HOURS,
            ),
        )

    def _waiting_after_scan(
        self,
        counters: DerivedCounters,
        sys_state: SystemState,
        snap: MarketSnapshot,
        regime: Regime,
        whale: Optional[WhaleReading],
        diagnostics: List[str],
        reasoning: str,
        now: datetime,
    ) -> EngineDecision:
        interval_h = self.cfg.SCAN_INTERVAL_MINUTES / 60.0
        return EngineDecision(
            status=EngineState.WAITING.value,
            transitions=[EngineState.WAITING.value],
            market_regime=regime.value,
            whale_intent=whale.intent.value if whale else None,
            whale_confidence=whale.confidence if whale else None,
            filters_applied=list(FILTERS_APPLIED),
            diagnostics=list(diagnostics),
            reasoning=reasoning,
            updated_at=to_iso(snap.updated_at),
            next_scan_in=format_duration(interval_h),
            time_until_next_action=format_duration(interval_h),
            system_performance=self._performance(
                counters, sys_state, EngineState.WAITING, None, now
            ),
        )

    def _selection_reasoning(
        self,
        opp: ScoredOpportunity,
        ranked: List[ScoredOpportunity],
        whale: Optional[WhaleReading],
        note: str,
    ) -> str:
        others = [
            f"{o.coin.symbol} ({o.probability_score}%, {format_duration(o.expected_hours_to_target)})"
            for o in ranked
            if o.coin.id != opp.coin.id
        ][:3]
        parts = [
            f"{opp.coin.name} selected.",
            f"Probability: {opp.probability_score}%.",
            f"Expected time to target: {format_duration(opp.expected_hours_to_target)}.",
            f"Target: {opp.setup.target_percent:.1f}% ({opp.setup.risk_reward:.1f}R).",
            f"Stop: {opp.setup.risk_percent:.1f}%.",
        ]
        if whale is not None and whale.intent.value != "neutral":
            parts.append(f"Whale: {whale.intent.value}.")
        if note and note != "funnel ranking":
            parts.append(f"Review: {note}.")
        if others:
            parts.append(f"Other candidates: {', '.join(others)}.")
        parts.append("Probability first. Speed second.")
        return " ".join(parts)


def build_engine(cfg: Optional[Settings] = None) -> DecisionEngine:
    cfg = cfg or settings
    db = DB(cfg.DB_PATH)
    return DecisionEngine(
        cfg=cfg,
        db=db,
        snapshots=SnapshotReader(cfg),
        whale=build_whale_source(cfg),
        reranker=build_reranker(cfg),
        audit=Audit(db, cfg.AUDIT_JSONL_PATH),
    )
