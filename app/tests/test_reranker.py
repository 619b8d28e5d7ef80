import json

import pytest
import requests

from app.core.config import Settings
from app.intel.reranker import (
    ChatReranker,
    RerankContext,
    RerankOutcome,
    RerankResult,
    UnavailableReranker,
    apply_rerank,
    build_reranker,
    parse_rerank_content,
)
from app.market.regime import Regime
from app.market.snapshot import CoinSnapshot
from app.strategy.funnel import run_funnel
from app.tests.market_data import coin

CTX = RerankContext(regime="TREND_UP", accuracy_percent=60.0, consecutive_losses=1, total_trades=5)


@pytest.fixture
def opps():
    coins = [
        CoinSnapshot.from_payload(coin(id="a", symbol="AAA", marketCapRank=3)),
        CoinSnapshot.from_payload(coin(id="b", symbol="BBB", marketCapRank=12, rsi14=62)),
    ]
    return run_funnel(coins, Regime.TREND_UP, Settings()).opportunities


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


def _chat(content):
    return {"choices": [{"message": {"content": content}}]}


def test_parse_plain_and_fenced_json():
    r = parse_rerank_content('{"selected_index": 1, "score_adjustment": 4, "rationale": "ok"}', 2)
    assert r.outcome == RerankOutcome.SELECTED
    assert r.index == 1
    assert r.score_adjustment == 4.0

    fenced = '```json\n{"reject_all": true, "rationale": "extended"}\n```'
    assert parse_rerank_content(fenced, 2).outcome == RerankOutcome.REJECT_ALL


def test_parse_garbage_is_unavailable():
    assert parse_rerank_content("I like AAA", 2).outcome == RerankOutcome.UNAVAILABLE
    assert parse_rerank_content('{"selected_index": 7}', 2).outcome == RerankOutcome.UNAVAILABLE
    assert parse_rerank_content("[1, 2]", 2).outcome == RerankOutcome.UNAVAILABLE


def test_unavailable_keeps_funnel_choice(opps):
    sel = apply_rerank(opps, UnavailableReranker().rank(opps, CTX), 10, 70)
    assert sel.opportunity is opps[0]
    assert not sel.vetoed


def test_selection_can_reorder(opps):
    sel = apply_rerank(opps, RerankResult(RerankOutcome.SELECTED, index=1, score_adjustment=3), 10, 70)
    assert sel.opportunity.coin.id == opps[1].coin.id
    assert sel.opportunity.probability_score == min(100, opps[1].probability_score + 3)


def test_adjustment_below_minimum_is_veto(opps):
    # clamped to -10, then judged against a minimum the clamped score misses
    res = RerankResult(RerankOutcome.SELECTED, index=0, score_adjustment=-40)
    floor = opps[0].probability_score - 5
    sel = apply_rerank(opps, res, 10, floor)
    assert sel.opportunity is None
    assert sel.vetoed


def test_out_of_range_index_falls_back(opps):
    sel = apply_rerank(opps, RerankResult(RerankOutcome.SELECTED, index=9), 10, 70)
    assert sel.opportunity is opps[0]


def test_build_reranker_needs_url_and_key():
    assert isinstance(build_reranker(Settings()), UnavailableReranker)
    s = Settings(RERANK_API_URL="http://llm.local/v1/chat/completions", RERANK_API_KEY="k")
    assert isinstance(build_reranker(s), ChatReranker)


def test_chat_reranker_posts_candidates(monkeypatch, opps):
    seen = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        seen["url"] = url
        seen["body"] = json
        seen["timeout"] = timeout
        return _Resp(200, _chat('{"selected_index": 0, "score_adjustment": 2, "rationale": "clean"}'))

    monkeypatch.setattr(requests, "post", fake_post)
    s = Settings(RERANK_API_URL="http://llm.local/v1/chat/completions", RERANK_API_KEY="k")
    r = ChatReranker(s).rank(opps, CTX)

    assert r.outcome == RerankOutcome.SELECTED
    assert seen["timeout"] == s.RERANK_TIMEOUT_SECONDS
    payload = json.loads(seen["body"]["messages"][1]["content"])
    assert [c["symbol"] for c in payload["candidates"]] == [o.coin.symbol for o in opps]
    assert payload["regime"] == "TREND_UP"


def test_chat_reranker_timeout_is_unavailable(monkeypatch, opps):
    def fake_post(*a, **kw):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "post", fake_post)
    s = Settings(RERANK_API_URL="http://llm.local/v1/chat/completions", RERANK_API_KEY="k")
    assert ChatReranker(s).rank(opps, CTX).outcome == RerankOutcome.UNAVAILABLE


def test_chat_reranker_http_error_is_unavailable(monkeypatch, opps):
    monkeypatch.setattr(requests, "post", lambda *a, **kw: _Resp(429, {}))
    s = Settings(RERANK_API_URL="http://llm.local/v1/chat/completions", RERANK_API_KEY="k")
    assert ChatReranker(s).rank(opps, CTX).outcome == RerankOutcome.UNAVAILABLE


@pytest.mark.parametrize("flag", ["false", "no", "0", False, 0, None])
def test_string_false_reject_flag_is_not_a_veto(flag):
    content = json.dumps({"selected_index": 0, "reject_all": flag})
    assert parse_rerank_content(content, 3).outcome == RerankOutcome.SELECTED


@pytest.mark.parametrize("flag", ["true", "True", True, 1])
def test_reject_flag_variants(flag):
    content = json.dumps({"reject_all": flag})
    assert parse_rerank_content(content, 3).outcome == RerankOutcome.REJECT_ALL
