import pytest

from monitor.core.config import Settings


def test_defaults_are_valid():
    s = Settings(NOTIFY_URL="http://localhost:9000/notify")
    assert s.validate_runtime() == []


def test_non_positive_interval_is_fatal():
    s = Settings(STATUS_CHECK_INTERVAL_SECONDS=0)
    with pytest.raises(ValueError) as exc:
        s.validate_runtime()
    assert "STATUS_CHECK_INTERVAL_SECONDS" in str(exc.value)


def test_breaker_threshold_must_be_fraction():
    s = Settings(CIRCUIT_BREAKER_THRESHOLD=5)
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_missing_endpoints_is_warning_not_error():
    s = Settings(NOTIFY_URL=" ", ALERT_URL="", ANALYSIS_URL="")
    warnings = s.validate_runtime()
    assert any("only be logged" in w for w in warnings)


def test_seed_pairs_accepts_csv_and_json():
    assert Settings(SEED_PAIRS="btcusdt, ethusdt").SEED_PAIRS == ["BTCUSDT", "ETHUSDT"]
    assert Settings(SEED_PAIRS='["solusdt"]').SEED_PAIRS == ["SOLUSDT"]


def test_seed_pairs_from_env(monkeypatch):
    monkeypatch.setenv("SEED_PAIRS", "BTCUSDT,XRPUSDT")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings()
    assert s.SEED_PAIRS == ["BTCUSDT", "XRPUSDT"]
    assert s.LOG_LEVEL == "DEBUG"
