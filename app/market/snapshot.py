# app/market/snapshot.py
from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from app.core.config import Settings
from app.core.errors import MarketDataUnavailable
from app.core.timefmt import parse_iso, to_iso, utc_now

log = logging.getLogger("swingdesk.market")


def _num(v: Any, fallback: float = 0.0) -> float:
    if v is None:
        return fallback
    try:
        f = float(v)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(f):
        return fallback
    return f


@dataclass(frozen=True)
class CoinSnapshot:
    id: str
    symbol: str
    name: str
    current_price: float
    market_cap: float
    market_cap_rank: int
    volume_24h: float
    change_1h: float
    change_24h: float
    change_7d: float
    change_30d: float
    rsi14: float
    atr14: float  # percent of price
    volume_to_mcap: float
    image: str = ""
    high_24h: float = 0.0
    low_24h: float = 0.0

    @classmethod
    def from_payload(cls, d: Dict[str, Any]) -> "CoinSnapshot":
        """Parses one coin from the ingestion job's camelCase payload."""
        mcap = _num(d.get("marketCap"))
        vol = _num(d.get("volume24h"))
        if d.get("volumeToMcap") is not None:
            vol_mcap = _num(d.get("volumeToMcap"))
        else:
            vol_mcap = vol / mcap if mcap > 0 else 0.0

        return cls(
            id=str(d.get("id") or ""),
            symbol=str(d.get("symbol") or "").upper(),
            name=str(d.get("name") or ""),
            image=str(d.get("image") or ""),
            current_price=_num(d.get("currentPrice")),
            market_cap=mcap,
            market_cap_rank=int(_num(d.get("marketCapRank"), 9999)),
            volume_24h=vol,
            high_24h=_num(d.get("high24h")),
            low_24h=_num(d.get("low24h")),
            change_1h=_num(d.get("change1h")),
            change_24h=_num(d.get("change24h")),
            change_7d=_num(d.get("change7d")),
            change_30d=_num(d.get("change30d")),
            rsi14=_num(d.get("rsi14"), 50.0),
            atr14=_num(d.get("atr14")),
            volume_to_mcap=vol_mcap,
        )


@dataclass(frozen=True)
class MarketSnapshot:
    updated_at: datetime
    source: str
    coins: Tuple[CoinSnapshot, ...]

    def find(self, coin_id: str) -> Optional[CoinSnapshot]:
        for c in self.coins:
            if c.id == coin_id:
                return c
        return None

    def age_seconds(self, now: datetime) -> float:
        return (now - self.updated_at).total_seconds()

    def is_stale(self, now: datetime, max_age_seconds: float) -> bool:
        return self.age_seconds(now) > float(max_age_seconds)


def parse_payload(payload: Dict[str, Any]) -> MarketSnapshot:
    if not isinstance(payload, dict):
        raise MarketDataUnavailable("snapshot payload is not an object")

    raw_coins = payload.get("coins") or []
    if not isinstance(raw_coins, list):
        raise MarketDataUnavailable("snapshot 'coins' is not a list")

    coins: List[CoinSnapshot] = []
    for raw in raw_coins:
        if not isinstance(raw, dict):
            continue
        coin = CoinSnapshot.from_payload(raw)
        if not coin.id:
            continue
        coins.append(coin)

    if not coins:
        raise MarketDataUnavailable("no market data available")

    try:
        updated_at = parse_iso(payload.get("updatedAt"))
    except ValueError as e:
        raise MarketDataUnavailable(f"bad snapshot timestamp: {e}") from e
    if updated_at is None:
        raise MarketDataUnavailable("snapshot has no updatedAt")

    return MarketSnapshot(
        updated_at=updated_at,
        source=str(payload.get("source") or "unknown"),
        coins=tuple(coins),
    )


class SnapshotSource(Protocol):
    def load(self, now: Optional[datetime] = None) -> MarketSnapshot: ...


class SnapshotReader:
    """
    Reads the latest enriched-coin snapshot produced by the ingestion job.

    Source is MARKET_SNAPSHOT_URL when set, otherwise MARKET_SNAPSHOT_PATH.
    A stale snapshot is still returned; it only triggers a background
    refresh request.
    """

    def __init__(self, cfg: Settings):
        self.cfg = cfg
        self._refresh_lock = threading.Lock()
        self._last_refresh_request: Optional[datetime] = None

    def load(self, now: Optional[datetime] = None) -> MarketSnapshot:
        now = now or utc_now()
        payload = self._fetch_payload()
        snap = parse_payload(payload)

        if snap.is_stale(now, self.cfg.SNAPSHOT_STALE_SECONDS):
            log.info(
                "snapshot stale (updated_at=%s, age=%.0fs), requesting refresh",
                to_iso(snap.updated_at),
                snap.age_seconds(now),
            )
            self.request_refresh(now)

        return snap

    def _fetch_payload(self) -> Dict[str, Any]:
        url = self.cfg.MARKET_SNAPSHOT_URL
        if url:
            try:
                r = requests.get(url, timeout=self.cfg.HTTP_TIMEOUT_SECONDS)
                r.raise_for_status()
                return r.json()
            except (requests.RequestException, ValueError) as e:
                raise MarketDataUnavailable(f"snapshot download failed: {e}") from e

        path = Path(self.cfg.MARKET_SNAPSHOT_PATH)
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise MarketDataUnavailable(f"snapshot file unreadable ({path}): {e}") from e

    def request_refresh(self, now: datetime) -> bool:
        """
        Fire-and-forget POST to the ingestion job. At most one request per
        stale window; returns True when a request was dispatched.
        """
        url = self.cfg.MARKET_REFRESH_URL
        if not url:
            return False

        with self._refresh_lock:
            last = self._last_refresh_request
            window = timedelta(seconds=max(60, int(self.cfg.SNAPSHOT_STALE_SECONDS) // 4))
            if last is not None and now - last < window:
                return False
            self._last_refresh_request = now

        t = threading.Thread(
            target=self._post_refresh, args=(url,), name="snapshot-refresh", daemon=True
        )
        t.start()
        return True

    def _post_refresh(self, url: str) -> None:
        try:
            r = requests.post(url, json={}, timeout=self.cfg.HTTP_TIMEOUT_SECONDS)
            if r.status_code >= 400:
                log.warning("snapshot refresh rejected: HTTP %s", r.status_code)
        except requests.RequestException as e:
            log.warning("snapshot refresh failed: %s", e)
