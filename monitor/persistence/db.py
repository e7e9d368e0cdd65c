from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator


# =========================
# Database class
# =========================
class DB:
    """
    Single source of truth for SQLite access.
    Default path: data/monitor.db
    """

    def __init__(self, path: str = "data/monitor.db"):
        self.path = path

        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        self._init()

    # -------------------------
    # Connection manager
    # -------------------------
    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # -------------------------
    # Init / migrations
    # -------------------------
    def _init(self) -> None:
        conn = sqlite3.connect(self.path, timeout=30)
        try:
            # =========================
            # Anomaly triggers
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS monitoring_triggers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    trigger_type TEXT NOT NULL,         -- volume_spike/price_move
                    trigger_value REAL NOT NULL,
                    threshold_used REAL NOT NULL,
                    metadata_json TEXT,
                    analysis_started INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Strategies (owned externally, advanced by the position tracker)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS active_strategies (
                    id TEXT PRIMARY KEY,
                    analysis_id TEXT,
                    symbol TEXT NOT NULL,
                    direction TEXT NOT NULL,            -- LONG/SHORT
                    entry_min REAL,
                    entry_max REAL,
                    target_1 REAL NOT NULL,
                    target_2 REAL NOT NULL,
                    target_3 REAL NOT NULL,
                    stop_loss REAL NOT NULL,
                    targets_hit INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'waiting_entry',
                    current_price REAL,
                    last_check_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Circuit breaker activations
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS circuit_breaker_state (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    activated_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    price_change_percent REAL NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )

            # =========================
            # System logs (operational audit)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS system_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_utc TEXT NOT NULL,
                    level TEXT NOT NULL,
                    category TEXT NOT NULL,
                    message TEXT NOT NULL,
                    metadata_json TEXT,
                    source TEXT
                )
                """
            )

            # =========================
            # Runtime config (key -> json value)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS system_config (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Indexes
            # =========================
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_triggers_symbol ON monitoring_triggers(symbol)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_strategies_status ON active_strategies(status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_breaker_symbol ON circuit_breaker_state(symbol)"
            )

            conn.commit()

        finally:
            conn.close()
