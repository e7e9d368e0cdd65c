# monitor/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("monitor.config")


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["BTCUSDT","ETHUSDT"]
      - csv:  "BTCUSDT,ETHUSDT"
      - json: '["BTCUSDT","ETHUSDT"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except Exception:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False prevents pydantic-settings from auto-json-decoding List fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Storage / logging ---
    DB_PATH: str = "data/monitor.db"
    AUDIT_JSONL_PATH: str = "logs/system_log.jsonl"
    LOG_LEVEL: str = "INFO"

    # --- Outbound HTTP collaborators (empty = log only) ---
    NOTIFY_URL: str = ""
    ALERT_URL: str = ""
    ANALYSIS_URL: str = ""
    API_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- Scheduler cadence ---
    STATUS_CHECK_INTERVAL_SECONDS: float = 10.0
    PAIR_RELOAD_INTERVAL_SECONDS: float = 60.0
    THRESHOLD_RELOAD_INTERVAL_SECONDS: float = 60.0
    POSITION_RELOAD_INTERVAL_SECONDS: float = 15.0

    # --- Trigger detection ---
    VOLUME_BASELINE_UPDATE_SECONDS: int = 3600
    PRICE_WINDOW_SECONDS: int = 300
    TRIGGER_COOLDOWN_SECONDS: int = 300
    VOLUME_SPIKE_THRESHOLD: float = 1.20  # ratio to baseline
    PRICE_MOVE_THRESHOLD_PCT: float = 0.5  # percent

    # --- Position tracking ---
    POSITION_EPSILON: float = 0.001
    SILENT_UPDATE_MIN_CHANGE: float = 0.001

    # --- Circuit breaker ---
    CIRCUIT_BREAKER_WINDOW_SECONDS: int = 900
    CIRCUIT_BREAKER_THRESHOLD: float = 0.05
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: int = 1800

    # Written to system_config.monitored_pairs on startup only when that key is absent
    SEED_PAIRS: List[str] = Field(default_factory=list)

    @field_validator("SEED_PAIRS", mode="before")
    @classmethod
    def parse_seed_pairs(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.NOTIFY_URL = (self.NOTIFY_URL or "").strip()
        self.ALERT_URL = (self.ALERT_URL or "").strip()
        self.ANALYSIS_URL = (self.ANALYSIS_URL or "").strip()

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        intervals = {
            "STATUS_CHECK_INTERVAL_SECONDS": self.STATUS_CHECK_INTERVAL_SECONDS,
            "PAIR_RELOAD_INTERVAL_SECONDS": self.PAIR_RELOAD_INTERVAL_SECONDS,
            "THRESHOLD_RELOAD_INTERVAL_SECONDS": self.THRESHOLD_RELOAD_INTERVAL_SECONDS,
            "POSITION_RELOAD_INTERVAL_SECONDS": self.POSITION_RELOAD_INTERVAL_SECONDS,
            "VOLUME_BASELINE_UPDATE_SECONDS": self.VOLUME_BASELINE_UPDATE_SECONDS,
            "PRICE_WINDOW_SECONDS": self.PRICE_WINDOW_SECONDS,
            "CIRCUIT_BREAKER_WINDOW_SECONDS": self.CIRCUIT_BREAKER_WINDOW_SECONDS,
            "CIRCUIT_BREAKER_COOLDOWN_SECONDS": self.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        }
        for name, value in intervals.items():
            if value <= 0:
                errors.append(f"{name} must be > 0.")

        if self.TRIGGER_COOLDOWN_SECONDS < 0:
            errors.append("TRIGGER_COOLDOWN_SECONDS must be >= 0.")

        # Threshold sanity
        if self.VOLUME_SPIKE_THRESHOLD <= 0:
            errors.append("VOLUME_SPIKE_THRESHOLD must be > 0.")
        if self.PRICE_MOVE_THRESHOLD_PCT <= 0:
            errors.append("PRICE_MOVE_THRESHOLD_PCT must be > 0.")
        if not (0 < self.CIRCUIT_BREAKER_THRESHOLD < 1):
            errors.append("CIRCUIT_BREAKER_THRESHOLD must be a fraction in (0, 1).")

        if not (0 <= self.POSITION_EPSILON <= 0.05):
            errors.append("POSITION_EPSILON must be within [0, 0.05].")
        if self.SILENT_UPDATE_MIN_CHANGE < 0:
            errors.append("SILENT_UPDATE_MIN_CHANGE must be >= 0.")

        if self.CIRCUIT_BREAKER_WINDOW_SECONDS < self.PRICE_WINDOW_SECONDS:
            warnings.append(
                "CIRCUIT_BREAKER_WINDOW_SECONDS is shorter than PRICE_WINDOW_SECONDS; "
                "flash crashes may be detected later than price moves."
            )

        if not (self.NOTIFY_URL or self.ALERT_URL or self.ANALYSIS_URL):
            warnings.append(
                "No NOTIFY_URL / ALERT_URL / ANALYSIS_URL configured. "
                "Events will only be logged."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
