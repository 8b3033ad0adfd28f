import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Ensure tests never touch real endpoints or the default database.
    """
    monkeypatch.setenv("WATCHLIST", "BTCUSDT,ETHUSDT,SOLUSDT")
    monkeypatch.setenv("BINANCE_REST_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("STREAM_ENABLED", "false")
    monkeypatch.setenv("VALIDATOR_URL", "")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "audit.jsonl"))
