import pytest

from app.core.config import Settings


def test_defaults_are_valid():
    s = Settings()
    assert s.validate_runtime() == []
    assert s.REFERENCE_SYMBOLS == ["BTC", "ETH"]
    assert s.whale_enabled is False
    assert s.rerank_enabled is False


def test_invalid_mode_is_fatal():
    s = Settings(EXECUTION_MODE="banana")
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_reference_symbols_parse_csv_and_json(monkeypatch):
    monkeypatch.setenv("REFERENCE_SYMBOLS", "btc, sol")
    assert Settings().REFERENCE_SYMBOLS == ["BTC", "SOL"]

    monkeypatch.setenv("REFERENCE_SYMBOLS", '["eth","btc"]')
    assert Settings().REFERENCE_SYMBOLS == ["ETH", "BTC"]


def test_reference_symbols_must_be_a_pair():
    s = Settings(REFERENCE_SYMBOLS="BTC,ETH,SOL")
    with pytest.raises(ValueError) as e:
        s.validate_runtime()
    assert "REFERENCE_SYMBOLS" in str(e.value)


def test_inverted_stop_band_is_fatal():
    s = Settings(MIN_STOP_LOSS_PCT=5.0, MAX_STOP_LOSS_PCT=2.0)
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_live_mode_warning_not_error():
    s = Settings(EXECUTION_MODE="LIVE")
    warnings = s.validate_runtime()
    assert s.EXECUTION_MODE == "live"
    assert any("paper-tracked" in w for w in warnings)


def test_half_configured_whale_feed_warns():
    s = Settings(WHALE_FEED_URL="http://feed.local/tx")
    warnings = s.validate_runtime()
    assert s.whale_enabled is False
    assert any("WHALE_INTEL_URL" in w for w in warnings)


def test_win_cooldown_longer_than_loss_warns():
    s = Settings(COOLDOWN_AFTER_WIN_HOURS=6, COOLDOWN_AFTER_LOSS_HOURS=2)
    warnings = s.validate_runtime()
    assert any("COOLDOWN_AFTER_WIN_HOURS" in w for w in warnings)
