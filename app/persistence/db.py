from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from app.core.errors import LedgerUnavailable
from app.core.timefmt import to_iso, utc_now


# =========================
# Time helpers
# =========================
def utc_now_iso() -> str:
    return to_iso(utc_now())


# =========================
# Database class
# =========================
class DB:
    """
    Single source of truth for SQLite access.
    Default path: data/engine.db
    """

    def __init__(self, path: str = "data/engine.db", timeout: float = 30.0):
        self.path = path
        self.timeout = float(timeout)

        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        self._init()

    # -------------------------
    # Connection managers
    # -------------------------
    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"ledger unreachable: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction that takes the database write lock up front
        (BEGIN IMMEDIATE), so a read-then-insert inside it cannot interleave
        with another writer.
        """
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"ledger unreachable: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # -------------------------
    # Init / migrations
    # -------------------------
    def _init(self) -> None:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"ledger unreachable: {e}") from e
        try:
            # =========================
            # Trades (one row per trade attempt)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    coin_id TEXT NOT NULL,
                    coin_symbol TEXT NOT NULL,
                    coin_name TEXT NOT NULL,
                    action TEXT NOT NULL CHECK (action IN ('BUY', 'SELL')),
                    entry_price REAL NOT NULL,
                    target_price REAL NOT NULL,
                    stop_loss REAL NOT NULL,
                    entry_type TEXT NOT NULL CHECK (entry_type IN ('IMMEDIATE', 'LIMIT')),
                    entry_filled INTEGER NOT NULL DEFAULT 0,
                    filled_at TEXT,
                    probability_score INTEGER,
                    confidence_score INTEGER,
                    whale_intent TEXT,
                    regime TEXT,
                    reasoning TEXT,
                    result TEXT NOT NULL DEFAULT 'PENDING'
                        CHECK (result IN ('PENDING', 'SUCCESS', 'FAILED', 'NOT_EXECUTED')),
                    exit_price REAL,
                    profit_loss_percent REAL,
                    created_at TEXT NOT NULL,
                    closed_at TEXT,
                    last_monitored_at TEXT
                )
                """
            )

            # At most one PENDING row, enforced by the database itself.
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_trades_single_pending
                ON trades(result) WHERE result = 'PENDING'
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_trades_closed ON trades(closed_at, seq)"
            )

            # =========================
            # System state (single row)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS system_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    mode TEXT NOT NULL DEFAULT 'paper' CHECK (mode IN ('paper', 'live')),
                    last_scan_at TEXT,
                    last_scan_summary TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Events (audit log)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_utc TEXT NOT NULL,
                    invocation_id TEXT,
                    trade_id TEXT,
                    event_type TEXT NOT NULL,
                    action TEXT,
                    details_json TEXT
                )
                """
            )

            # =========================
            # Indexes
            # =========================
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp_utc)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_trade ON events(trade_id)"
            )

            conn.commit()

        except sqlite3.Error as e:
            raise LedgerUnavailable(f"ledger schema init failed: {e}") from e
        finally:
            conn.close()
