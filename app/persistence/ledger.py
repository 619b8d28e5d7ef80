# app/persistence/ledger.py
from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from app.core.errors import LedgerUnavailable
from app.core.timefmt import parse_iso, to_iso
from app.persistence.db import DB
from app.runner.models import (
    EntryType,
    TradeAction,
    TradeRecord,
    TradeResult,
    TERMINAL_RESULTS,
)

log = logging.getLogger("swingdesk.ledger")


@contextmanager
def _guard(op: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        raise LedgerUnavailable(f"ledger {op} failed: {e}") from e


def _row_to_trade(r: sqlite3.Row) -> TradeRecord:
    return TradeRecord(
        id=r["id"],
        coin_id=r["coin_id"],
        coin_symbol=r["coin_symbol"],
        coin_name=r["coin_name"],
        action=TradeAction(r["action"]),
        entry_price=float(r["entry_price"]),
        target_price=float(r["target_price"]),
        stop_loss=float(r["stop_loss"]),
        entry_type=EntryType(r["entry_type"]),
        created_at=parse_iso(r["created_at"]),
        result=TradeResult(r["result"]),
        entry_filled=bool(r["entry_filled"]),
        filled_at=parse_iso(r["filled_at"]),
        probability_score=r["probability_score"],
        confidence_score=r["confidence_score"],
        whale_intent=r["whale_intent"],
        regime=r["regime"],
        reasoning=r["reasoning"] or "",
        exit_price=float(r["exit_price"]) if r["exit_price"] is not None else None,
        profit_loss_percent=(
            float(r["profit_loss_percent"])
            if r["profit_loss_percent"] is not None
            else None
        ),
        closed_at=parse_iso(r["closed_at"]),
        last_monitored_at=parse_iso(r["last_monitored_at"]),
    )


def pnl_percent(action: TradeAction, entry_price: float, price: float) -> float:
    """Directional P&L in percent: BUY gains when price rises, SELL when it falls."""
    if entry_price <= 0:
        return 0.0
    if action == TradeAction.BUY:
        return (price - entry_price) / entry_price * 100.0
    return (entry_price - price) / entry_price * 100.0


class Ledger:
    """
    Append-mostly store of trade attempts.

    Rows are inserted only through create_pending() (compare-and-create) and
    mutated only to leave PENDING, once.
    """

    def __init__(self, db: DB):
        self.db = db

    # ---------- READ ----------
    def get_pending(self) -> Optional[TradeRecord]:
        with _guard("read"), self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM trades WHERE result = 'PENDING' ORDER BY seq LIMIT 1"
            ).fetchone()
        return _row_to_trade(row) if row else None

    def get(self, trade_id: str) -> Optional[TradeRecord]:
        with _guard("read"), self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM trades WHERE id = ?", (trade_id,)
            ).fetchone()
        return _row_to_trade(row) if row else None

    def count_pending(self) -> int:
        with _guard("read"), self.db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM trades WHERE result = 'PENDING'"
            ).fetchone()
        return int(row["n"])

    def closed_trades(self) -> List[TradeRecord]:
        """All non-PENDING rows in close order (closed_at, then insertion order)."""
        with _guard("read"), self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM trades
                WHERE result != 'PENDING'
                ORDER BY closed_at ASC, seq ASC
                """
            ).fetchall()
        return [_row_to_trade(r) for r in rows]

    def list_trades(
        self, limit: int = 50, result: Optional[TradeResult] = None
    ) -> List[TradeRecord]:
        limit = max(1, min(int(limit), 500))
        with _guard("read"), self.db.connect() as conn:
            if result is None:
                rows = conn.execute(
                    "SELECT * FROM trades ORDER BY seq DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM trades WHERE result = ? ORDER BY seq DESC LIMIT ?",
                    (result.value, limit),
                ).fetchall()
        return [_row_to_trade(r) for r in rows]

    # ---------- COMPARE-AND-CREATE ----------
    def create_pending(self, trade: TradeRecord) -> Optional[TradeRecord]:
        """
        Insert a PENDING trade only if no PENDING trade exists.

        Returns the stored record, or None when another PENDING row won the
        race. The check and the insert run under one write lock; the partial
        unique index rejects anything that slips past it.
        """
        trade_id = trade.id or str(uuid.uuid4())
        try:
            with _guard("create"), self.db.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO trades (
                        id, coin_id, coin_symbol, coin_name, action,
                        entry_price, target_price, stop_loss, entry_type,
                        entry_filled, filled_at, probability_score, confidence_score,
                        whale_intent, regime, reasoning, result,
                        created_at, last_monitored_at
                    )
                    SELECT ?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,'PENDING',?,?
                    WHERE NOT EXISTS (SELECT 1 FROM trades WHERE result = 'PENDING')
                    """,
                    (
                        trade_id,
                        trade.coin_id,
                        trade.coin_symbol,
                        trade.coin_name,
                        trade.action.value,
                        float(trade.entry_price),
                        float(trade.target_price),
                        float(trade.stop_loss),
                        trade.entry_type.value,
                        1 if trade.entry_filled else 0,
                        to_iso(trade.filled_at) if trade.filled_at else None,
                        trade.probability_score,
                        trade.confidence_score,
                        trade.whale_intent,
                        trade.regime,
                        trade.reasoning,
                        to_iso(trade.created_at),
                        to_iso(trade.last_monitored_at or trade.created_at),
                    ),
                )
                inserted = cur.rowcount == 1
        except sqlite3.IntegrityError:
            log.warning("compare-and-create rejected by single-pending index")
            return None

        if not inserted:
            log.info("compare-and-create aborted: a PENDING trade already exists")
            return None

        return self.get(trade_id)

    # ---------- LIFECYCLE ----------
    def mark_filled(self, trade_id: str, now: datetime) -> bool:
        with _guard("fill"), self.db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE trades
                SET entry_filled = 1, filled_at = ?, last_monitored_at = ?
                WHERE id = ? AND result = 'PENDING' AND entry_filled = 0
                """,
                (to_iso(now), to_iso(now), trade_id),
            )
            return cur.rowcount == 1

    def touch_monitored(self, trade_id: str, now: datetime) -> None:
        with _guard("touch"), self.db.connect() as conn:
            conn.execute(
                "UPDATE trades SET last_monitored_at = ? WHERE id = ? AND result = 'PENDING'",
                (to_iso(now), trade_id),
            )

    def close(
        self,
        trade: TradeRecord,
        result: TradeResult,
        exit_price: Optional[float],
        now: datetime,
    ) -> bool:
        """
        Move a PENDING trade to a terminal result.

        Returns False if the row had already left PENDING; closed rows are
        never reopened or re-closed.
        """
        if result not in TERMINAL_RESULTS:
            raise ValueError(f"not a terminal result: {result}")

        if result == TradeResult.NOT_EXECUTED or exit_price is None:
            pnl = 0.0
            stored_exit = None
        else:
            pnl = pnl_percent(trade.action, trade.entry_price, exit_price)
            stored_exit = float(exit_price)

        with _guard("close"), self.db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE trades
                SET result = ?, exit_price = ?, profit_loss_percent = ?,
                    closed_at = ?, last_monitored_at = ?
                WHERE id = ? AND result = 'PENDING'
                """,
                (
                    result.value,
                    stored_exit,
                    pnl,
                    to_iso(now),
                    to_iso(now),
                    trade.id,
                ),
            )
            closed = cur.rowcount == 1

        if not closed:
            log.warning("close ignored: trade %s is no longer PENDING", trade.id)
        return closed
