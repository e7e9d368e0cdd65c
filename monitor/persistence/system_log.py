# monitor/persistence/system_log.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from monitor.core.timeutil import ms_to_iso, utc_now_iso
from monitor.persistence.db import DB

log = logging.getLogger("monitor.system_log")


class SystemLogStore:
    """
    DB is the source of truth.
    Additionally mirrors entries to a JSONL file for tailing.
    """

    def __init__(self, db: DB, jsonl_path: Optional[str] = "logs/system_log.jsonl", source: str = "monitor"):
        self.db = db
        self.source = source
        self.jsonl_path = Path(jsonl_path) if jsonl_path else None

        if self.jsonl_path is not None:
            try:
                self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                self.jsonl_path.touch(exist_ok=True)
            except OSError as e:
                # never crash the monitor due to mirror file issues
                log.warning("[SYSTEM_LOG] JSONL mirror unavailable (%s): %s", self.jsonl_path, e)
                self.jsonl_path = None

    def insert_circuit_breaker_log(self, state) -> int:
        with self.db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO circuit_breaker_state(
                    symbol, activated_at, expires_at, reason, price_change_percent, is_active
                )
                VALUES (?,?,?,?,?,1)
                """,
                (
                    state.symbol,
                    ms_to_iso(state.activated_at_ms),
                    ms_to_iso(state.expires_at_ms),
                    state.reason,
                    float(state.change_percent),
                ),
            )
            return int(cur.lastrowid)

    def insert_system_log(
        self,
        *,
        level: str,
        category: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ts = utc_now_iso()
        payload = json.dumps(metadata or {}, ensure_ascii=False)

        # 1) DB (source of truth)
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO system_logs(timestamp_utc, level, category, message, metadata_json, source)
                VALUES (?,?,?,?,?,?)
                """,
                (ts, level, category, message, payload, self.source),
            )

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": ts,
                "level": level,
                "category": category,
                "message": message,
                "metadata": metadata or {},
                "source": self.source,
            }
        )

    def tail(self, limit: int = 50) -> List[dict]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM system_logs ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["metadata"] = json.loads(d.pop("metadata_json") or "{}")
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        if self.jsonl_path is None:
            return
        try:
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False) + "\n")
        except OSError as e:
            log.warning("[SYSTEM_LOG] JSONL write failed: %s", e)
