import pytest

from app.core.config import Settings
from app.intel.reranker import UnavailableReranker
from app.intel.whale import DisabledWhaleSource
from app.persistence.audit import Audit
from app.persistence.db import DB
from app.runner.engine import DecisionEngine
from app.tests.market_data import FakeSnapshots, uptrend_market


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """
    Ensure tests never reach a network collaborator or a real ledger.
    """
    monkeypatch.setenv("EXECUTION_MODE", "paper")
    for k in (
        "MARKET_SNAPSHOT_URL",
        "MARKET_REFRESH_URL",
        "WHALE_FEED_URL",
        "WHALE_INTEL_URL",
        "WHALE_API_KEY",
        "RERANK_API_URL",
        "RERANK_API_KEY",
        "REFERENCE_SYMBOLS",
    ):
        monkeypatch.delenv(k, raising=False)


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        DB_PATH=str(tmp_path / "engine.db"),
        AUDIT_JSONL_PATH=str(tmp_path / "engine_audit.jsonl"),
        SNAPSHOT_STALE_SECONDS=10 * 24 * 3600,
    )


@pytest.fixture
def db(cfg):
    return DB(cfg.DB_PATH)


@pytest.fixture
def market():
    return FakeSnapshots(uptrend_market())


@pytest.fixture
def make_engine(cfg, db, market):
    def _make(reranker=None, whale=None, snapshots=None):
        return DecisionEngine(
            cfg=cfg,
            db=db,
            snapshots=snapshots or market,
            whale=whale or DisabledWhaleSource(),
            reranker=reranker or UnavailableReranker(),
            audit=Audit(db, cfg.AUDIT_JSONL_PATH),
        )

    return _make
