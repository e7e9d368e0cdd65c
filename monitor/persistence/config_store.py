from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional

from monitor.core.config import _parse_list
from monitor.core.timeutil import utc_now_iso
from monitor.detection.trigger_detector import Thresholds
from monitor.persistence.db import DB

log = logging.getLogger("monitor.config_store")

SCANNER_STATUS = "scanner_status"
MONITORED_PAIRS = "monitored_pairs"
VOLUME_SPIKE_THRESHOLD = "volume_spike_threshold"
PRICE_MOVE_THRESHOLD = "price_move_threshold"  # stored as a fraction (0.005 = 0.5%)

_MISSING = object()


class ConfigStore:
    """Key -> JSON value rows in system_config."""

    def __init__(self, db: DB):
        self.db = db

    def get(self, key: str, default: Any = _MISSING) -> Any:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT value_json FROM system_config WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            if default is _MISSING:
                raise KeyError(key)
            return default
        return json.loads(row["value_json"])

    def get_many(self, keys: List[str]) -> dict:
        marks = ",".join("?" for _ in keys)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT key, value_json FROM system_config WHERE key IN ({marks})", keys
            ).fetchall()
        return {r["key"]: json.loads(r["value_json"]) for r in rows}

    def set(self, key: str, value: Any) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO system_config(key, value_json, updated_at)
                VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json=excluded.value_json,
                    updated_at=excluded.updated_at
                """,
                (key, json.dumps(value, ensure_ascii=False), utc_now_iso()),
            )


def _positive_float(v: Any) -> Optional[float]:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if f > 0 else None


class ConfigProvider:
    """
    Runtime config with last-known fallback.

    Before the first successful read the provider is inert: scanner stopped,
    no pairs, default thresholds.
    """

    def __init__(self, store: ConfigStore, default_thresholds: Optional[Thresholds] = None):
        self.store = store
        self._status: str = "stopped"
        self._pairs: List[str] = []
        self._thresholds: Thresholds = default_thresholds or Thresholds()

    async def get_scanner_status(self) -> str:
        try:
            raw = await asyncio.to_thread(self.store.get, SCANNER_STATUS)
        except KeyError:
            log.error("[STATUS] scanner_status not configured; keeping %s", self._status)
            return self._status
        except Exception:
            log.exception("[STATUS] Error fetching status; keeping %s", self._status)
            return self._status

        status = str(raw or "").strip().lower()
        if status not in ("running", "stopped"):
            log.error("[STATUS] Unknown scanner_status %r; keeping %s", raw, self._status)
            return self._status
        self._status = status
        return status

    async def get_monitored_pairs(self) -> List[str]:
        try:
            raw = await asyncio.to_thread(self.store.get, MONITORED_PAIRS)
        except KeyError:
            log.error("[CONFIG] monitored_pairs not configured; keeping %d pairs", len(self._pairs))
            return list(self._pairs)
        except Exception:
            log.exception("[CONFIG] Error loading pairs; keeping %d pairs", len(self._pairs))
            return list(self._pairs)

        # dedupe, keep order
        seen = set()
        pairs = []
        for p in _parse_list(raw):
            if p not in seen:
                seen.add(p)
                pairs.append(p)
        self._pairs = pairs
        return list(pairs)

    async def get_thresholds(self) -> Thresholds:
        try:
            raw = await asyncio.to_thread(
                self.store.get_many, [VOLUME_SPIKE_THRESHOLD, PRICE_MOVE_THRESHOLD]
            )
        except Exception:
            log.exception("[CONFIG] Failed to load thresholds; keeping last known")
            return self._thresholds

        volume = _positive_float(raw.get(VOLUME_SPIKE_THRESHOLD))
        price_frac = _positive_float(raw.get(PRICE_MOVE_THRESHOLD))

        self._thresholds = Thresholds(
            volume_ratio=volume if volume is not None else self._thresholds.volume_ratio,
            price_percent=price_frac * 100 if price_frac is not None else self._thresholds.price_percent,
        )
        return self._thresholds
