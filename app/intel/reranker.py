from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from app.core.config import Settings
from app.strategy.base import ScoredOpportunity

log = logging.getLogger("swingdesk.reranker")


class RerankOutcome(str, Enum):
    SELECTED = "SELECTED"
    REJECT_ALL = "REJECT_ALL"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True)
class RerankContext:
    regime: str
    accuracy_percent: float
    consecutive_losses: int
    total_trades: int


@dataclass(frozen=True)
class RerankResult:
    outcome: RerankOutcome
    index: Optional[int] = None
    score_adjustment: float = 0.0
    rationale: str = ""

    @classmethod
    def unavailable(cls, why: str = "") -> "RerankResult":
        return cls(RerankOutcome.UNAVAILABLE, rationale=why)


class Reranker(Protocol):
    def rank(
        self, opportunities: Sequence[ScoredOpportunity], context: RerankContext
    ) -> RerankResult: ...


class UnavailableReranker:
    """Default collaborator: always defers to the funnel's own ranking."""

    def rank(
        self, opportunities: Sequence[ScoredOpportunity], context: RerankContext
    ) -> RerankResult:
        return RerankResult.unavailable("re-ranking disabled")


@dataclass(frozen=True)
class Selection:
    opportunity: Optional[ScoredOpportunity]
    note: str
    vetoed: bool = False


def apply_rerank(
    opportunities: Sequence[ScoredOpportunity],
    result: RerankResult,
    max_adjustment: float,
    min_probability: int,
) -> Selection:
    """
    Turn a collaborator answer into the final pick.

    UNAVAILABLE (or a malformed answer) keeps the funnel's top choice.
    REJECT_ALL, or a pick whose adjusted score drops under min_probability,
    is a veto.
    """
    if not opportunities:
        return Selection(None, "no opportunities")

    top = opportunities[0]

    if result.outcome == RerankOutcome.REJECT_ALL:
        return Selection(None, f"re-ranker rejected all candidates: {result.rationale}", vetoed=True)

    if result.outcome != RerankOutcome.SELECTED:
        return Selection(top, "funnel ranking")

    if result.index is None or not 0 <= result.index < len(opportunities):
        log.warning("re-ranker returned out-of-range index %s; using funnel ranking", result.index)
        return Selection(top, "funnel ranking")

    bound = abs(float(max_adjustment))
    adj = max(-bound, min(bound, float(result.score_adjustment or 0.0)))
    picked = opportunities[result.index]
    adjusted = max(0, min(100, int(round(picked.probability_score + adj))))

    if adjusted < min_probability:
        return Selection(
            None,
            f"re-ranker adjustment {adj:+.0f} dropped {picked.coin.symbol} below {min_probability}%",
            vetoed=True,
        )

    chosen = ScoredOpportunity(
        coin=picked.coin,
        setup=picked.setup,
        probability_score=adjusted,
        expected_hours_to_target=picked.expected_hours_to_target,
        reasons=list(picked.reasons),
    )
    note = f"re-ranker selected #{result.index + 1} ({adj:+.0f})"
    if result.rationale:
        note += f": {result.rationale}"
    return Selection(chosen, note)


def _strip_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = s.split("\n", 1)[1] if "\n" in s else ""
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def _truthy(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("true", "yes", "1")
    return isinstance(v, (bool, int, float)) and v == 1


def parse_rerank_content(content: str, n: int) -> RerankResult:
    try:
        data = json.loads(_strip_fences(content))
    except ValueError:
        return RerankResult.unavailable("unparseable re-ranker answer")
    if not isinstance(data, dict):
        return RerankResult.unavailable("unparseable re-ranker answer")

    rationale = str(data.get("rationale") or "")[:500]
    if _truthy(data.get("reject_all")):
        return RerankResult(RerankOutcome.REJECT_ALL, rationale=rationale)

    idx = data.get("selected_index")
    try:
        idx = int(idx)
    except (TypeError, ValueError):
        return RerankResult.unavailable("no selected_index")
    if not 0 <= idx < n:
        return RerankResult.unavailable(f"selected_index {idx} out of range")

    try:
        adj = float(data.get("score_adjustment") or 0.0)
    except (TypeError, ValueError):
        adj = 0.0

    return RerankResult(RerankOutcome.SELECTED, index=idx, score_adjustment=adj, rationale=rationale)


class ChatReranker:
    """Asks an OpenAI-compatible chat-completions endpoint to pick among the top candidates."""

    SYSTEM_PROMPT = (
        "You review swing-trade candidates that already passed a quantitative screen. "
        "Answer with JSON only: "
        '{"selected_index": <int or null>, "reject_all": <bool>, '
        '"score_adjustment": <number>, "rationale": <string>}.'
    )

    def __init__(self, cfg: Settings):
        self.url = cfg.RERANK_API_URL.strip()
        self.api_key = cfg.RERANK_API_KEY
        self.model = cfg.RERANK_MODEL
        self.timeout = cfg.RERANK_TIMEOUT_SECONDS
        self.max_adjustment = cfg.RERANK_MAX_ADJUSTMENT

    def _candidates(self, opportunities: Sequence[ScoredOpportunity]) -> List[Dict[str, Any]]:
        return [
            {
                "index": i,
                "symbol": o.coin.symbol,
                "action": o.action.value,
                "probability": o.probability_score,
                "eta_hours": round(o.expected_hours_to_target, 1),
                "risk_reward": round(o.setup.risk_reward, 2),
                "risk_percent": round(o.setup.risk_percent, 2),
                "rsi14": o.coin.rsi14,
                "change_24h": o.coin.change_24h,
                "change_7d": o.coin.change_7d,
                "reasons": o.reasons,
            }
            for i, o in enumerate(opportunities)
        ]

    def rank(
        self, opportunities: Sequence[ScoredOpportunity], context: RerankContext
    ) -> RerankResult:
        if not opportunities:
            return RerankResult.unavailable("no candidates")

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": json.dumps(
                        {
                            "regime": context.regime,
                            "performance": {
                                "accuracy_percent": context.accuracy_percent,
                                "consecutive_losses": context.consecutive_losses,
                                "total_trades": context.total_trades,
                            },
                            "max_score_adjustment": self.max_adjustment,
                            "candidates": self._candidates(opportunities),
                        }
                    ),
                },
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            r = requests.post(self.url, json=body, headers=headers, timeout=self.timeout)
            if r.status_code >= 400:
                log.info("re-ranker unavailable (HTTP %s)", r.status_code)
                return RerankResult.unavailable(f"HTTP {r.status_code}")
            content = r.json()["choices"][0]["message"]["content"]
        except requests.Timeout:
            log.info("re-ranker timed out after %.0fs", self.timeout)
            return RerankResult.unavailable("timeout")
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as e:
            log.warning("re-ranker failed: %s", e)
            return RerankResult.unavailable(str(e))

        return parse_rerank_content(str(content or ""), len(opportunities))


def build_reranker(cfg: Settings) -> Reranker:
    if cfg.rerank_enabled:
        return ChatReranker(cfg)
    return UnavailableReranker()
