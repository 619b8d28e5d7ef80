# app/persistence/audit.py
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.errors import LedgerUnavailable
from app.ops.context import get_invocation_id
from app.persistence.db import DB, utc_now_iso

log = logging.getLogger("swingdesk.audit")


class Audit:
    """
    DB audit is the source of truth for engine events.
    Additionally mirrors events to a JSONL file so they can be tailed.
    """

    def __init__(self, db: DB, jsonl_path: Optional[str] = "logs/engine_audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path) if jsonl_path else None

        if self.jsonl_path is not None:
            try:
                self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                self.jsonl_path.touch(exist_ok=True)
            except OSError as e:
                # never crash the engine due to audit file issues
                log.warning("audit jsonl unavailable: %s", e)

    def event(
        self,
        event_type: str,
        action: Optional[str] = None,
        trade_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        invocation_id = get_invocation_id()
        payload = json.dumps(details or {}, ensure_ascii=False, default=str)
        ts = utc_now_iso()

        # 1) DB (source of truth)
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO events(timestamp_utc, invocation_id, trade_id, event_type, action, details_json)
                    VALUES (?,?,?,?,?,?)
                    """,
                    (ts, invocation_id, trade_id, event_type, action, payload),
                )
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"audit write failed: {e}") from e

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": ts,
                "event_type": event_type,
                "invocation_id": invocation_id,
                "trade_id": trade_id,
                "action": action,
                "details": details or {},
            }
        )

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), 500))
        try:
            with self.db.connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
        except sqlite3.Error as e:
            log.warning("audit tail failed: %s", e)
            return []

        out = []
        for r in rows:
            try:
                details = json.loads(r["details_json"] or "{}")
            except ValueError:
                details = {}
            out.append(
                {
                    "id": r["id"],
                    "timestamp_utc": r["timestamp_utc"],
                    "invocation_id": r["invocation_id"],
                    "trade_id": r["trade_id"],
                    "event_type": r["event_type"],
                    "action": r["action"],
                    "details": details,
                }
            )
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        if self.jsonl_path is None:
            return
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # never crash the engine because the audit mirror failed
            log.warning("audit jsonl write failed: %s", e)
