import pytest

from monitor.persistence.db import DB


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def advance(self, seconds: float = 0, minutes: float = 0, hours: float = 0) -> None:
        self.ms += int((seconds + minutes * 60 + hours * 3600) * 1000)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Ensure tests never post to real endpoints or write outside tmp.
    """
    monkeypatch.setenv("NOTIFY_URL", "")
    monkeypatch.setenv("ALERT_URL", "")
    monkeypatch.setenv("ANALYSIS_URL", "")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "monitor.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "system_log.jsonl"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    return DB(str(tmp_path / "monitor.db"))
