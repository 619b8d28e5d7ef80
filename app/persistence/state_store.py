# app/persistence/state_store.py

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Optional

from app.core.errors import LedgerUnavailable
from app.core.timefmt import parse_iso, to_iso
from app.persistence.db import DB, utc_now_iso
from app.runner.models import SystemState

log = logging.getLogger("swingdesk.state")


class StateStore:
    """Single mutable system-state row (mode + last scan)."""

    def __init__(self, db: DB, default_mode: str = "paper"):
        self.db = db
        self.default_mode = default_mode if default_mode in ("paper", "live") else "paper"

    def load(self) -> SystemState:
        try:
            with self.db.connect() as conn:
                row = conn.execute(
                    "SELECT mode, last_scan_at, last_scan_summary, updated_at FROM system_state WHERE id = 1"
                ).fetchone()

                # lazily create the row (upsert behavior)
                if not row:
                    log.info("no system state row found, initialising defaults")
                    conn.execute(
                        """
                        INSERT OR IGNORE INTO system_state(id, mode, last_scan_at, last_scan_summary, updated_at)
                        VALUES (1, ?, NULL, NULL, ?)
                        """,
                        (self.default_mode, utc_now_iso()),
                    )
                    row = conn.execute(
                        "SELECT mode, last_scan_at, last_scan_summary, updated_at FROM system_state WHERE id = 1"
                    ).fetchone()
                elif row["mode"] != self.default_mode:
                    # configured mode wins over the stored one
                    log.info("execution mode changed %s -> %s", row["mode"], self.default_mode)
                    conn.execute(
                        "UPDATE system_state SET mode = ?, updated_at = ? WHERE id = 1",
                        (self.default_mode, utc_now_iso()),
                    )
                    row = conn.execute(
                        "SELECT mode, last_scan_at, last_scan_summary, updated_at FROM system_state WHERE id = 1"
                    ).fetchone()
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"system state read failed: {e}") from e

        if not row:
            return SystemState(mode=self.default_mode)

        summary: Dict[str, Any] = {}
        if row["last_scan_summary"]:
            try:
                summary = json.loads(row["last_scan_summary"])
            except ValueError:
                log.warning("unreadable last_scan_summary, ignoring")
                summary = {}

        return SystemState(
            mode=row["mode"] or self.default_mode,
            last_scan_at=parse_iso(row["last_scan_at"]),
            last_scan_summary=summary if isinstance(summary, dict) else {},
            updated_at=parse_iso(row["updated_at"]),
        )

    def record_scan(
        self, now: datetime, summary: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Stamp a completed scan. Idempotent: repeating it with the same
        arguments leaves the row unchanged.
        """
        payload = json.dumps(summary or {}, ensure_ascii=False, sort_keys=True)
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO system_state(id, mode, last_scan_at, last_scan_summary, updated_at)
                    VALUES (1, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        mode=excluded.mode,
                        last_scan_at=excluded.last_scan_at,
                        last_scan_summary=excluded.last_scan_summary,
                        updated_at=excluded.updated_at
                    """,
                    (self.default_mode, to_iso(now), payload, to_iso(now)),
                )
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"system state write failed: {e}") from e
