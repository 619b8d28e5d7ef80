from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import requests

from app.core.config import Settings

log = logging.getLogger("swingdesk.whale")


class WhaleIntent(str, Enum):
    ACCUMULATING = "accumulating"
    DISTRIBUTING = "distributing"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class WhaleReading:
    intent: WhaleIntent
    confidence: float  # 0..100

    def supports(self, action: str) -> bool:
        return (action == "BUY" and self.intent == WhaleIntent.ACCUMULATING) or (
            action == "SELL" and self.intent == WhaleIntent.DISTRIBUTING
        )

    def opposes(self, action: str) -> bool:
        return (action == "BUY" and self.intent == WhaleIntent.DISTRIBUTING) or (
            action == "SELL" and self.intent == WhaleIntent.ACCUMULATING
        )


class WhaleSource(Protocol):
    def read(self) -> Optional[WhaleReading]: ...


class DisabledWhaleSource:
    """Explicit 'no whale feed' mode."""

    def read(self) -> Optional[WhaleReading]:
        return None


def parse_reading(data: Dict[str, Any]) -> Optional[WhaleReading]:
    """
    Accepts either the classifier's nested shape
      {"whaleIntent": {"classification": ...}, "confidenceScore": ...}
    or a flat {"intent": ..., "confidence": ...}.
    """
    if not isinstance(data, dict):
        return None

    raw_intent = None
    wi = data.get("whaleIntent")
    if isinstance(wi, dict):
        raw_intent = wi.get("classification")
    if raw_intent is None:
        raw_intent = data.get("intent")

    raw_conf = data.get("confidenceScore")
    if raw_conf is None:
        raw_conf = data.get("confidence")

    try:
        intent = WhaleIntent(str(raw_intent or "neutral").lower().strip())
    except ValueError:
        intent = WhaleIntent.NEUTRAL

    try:
        confidence = float(raw_conf or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0

    return WhaleReading(intent=intent, confidence=max(0.0, min(100.0, confidence)))


class HttpWhaleSource:
    """
    Pulls recent large transactions from a feed and asks the external
    classifier for an intent. Any failure means "no reading".
    """

    def __init__(self, cfg: Settings):
        self.feed_url = cfg.WHALE_FEED_URL.strip()
        self.intel_url = cfg.WHALE_INTEL_URL.strip()
        self.api_key = cfg.WHALE_API_KEY
        self.timeout = cfg.HTTP_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def _recent_transactions(self) -> List[Dict[str, Any]]:
        r = requests.get(self.feed_url, headers=self._headers(), timeout=self.timeout)
        r.raise_for_status()
        data = r.json()
        if isinstance(data, dict):
            data = data.get("transactions") or []
        if not isinstance(data, list):
            return []
        return [t for t in data if isinstance(t, dict)]

    def read(self) -> Optional[WhaleReading]:
        try:
            txs = self._recent_transactions()
            if not txs:
                log.info("whale feed returned no transactions")
                return None
            r = requests.post(
                self.intel_url,
                json={"transactions": txs},
                headers=self._headers(),
                timeout=self.timeout,
            )
            if r.status_code >= 400:
                log.info("whale intelligence unavailable (HTTP %s), proceeding without", r.status_code)
                return None
            return parse_reading(r.json())
        except (requests.RequestException, ValueError) as e:
            log.warning("whale intelligence failed, proceeding without: %s", e)
            return None


def build_whale_source(cfg: Settings) -> WhaleSource:
    if cfg.whale_enabled:
        return HttpWhaleSource(cfg)
    return DisabledWhaleSource()
