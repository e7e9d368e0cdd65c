from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from monitor.core.timeutil import utc_now_iso
from monitor.persistence.db import DB

# columns a patch may touch
_PATCHABLE = {"analysis_started"}


class TriggerStore:
    def __init__(self, db: DB):
        self.db = db

    def create_trigger(
        self,
        symbol: str,
        kind: str,
        value: float,
        threshold: float,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[str] = None,
    ) -> int:
        payload = json.dumps(metadata or {}, ensure_ascii=False)

        with self.db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO monitoring_triggers(
                    symbol, trigger_type, trigger_value, threshold_used,
                    metadata_json, analysis_started, created_at
                )
                VALUES (?,?,?,?,?,0,?)
                """,
                (symbol, kind, float(value), float(threshold), payload, created_at or utc_now_iso()),
            )
            return int(cur.lastrowid)

    def update_trigger(self, trigger_id: int, patch: Dict[str, Any]) -> int:
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Unsupported trigger fields: {sorted(unknown)}")
        if not patch:
            return 0

        cols = ", ".join(f"{k} = ?" for k in patch)
        values = [1 if v is True else 0 if v is False else v for v in patch.values()]

        with self.db.connect() as conn:
            cur = conn.execute(
                f"UPDATE monitoring_triggers SET {cols} WHERE id = ?",
                (*values, int(trigger_id)),
            )
            return cur.rowcount

    def list_recent(self, symbol: Optional[str] = None, limit: int = 50) -> List[dict]:
        sql = "SELECT * FROM monitoring_triggers"
        args: list = []
        if symbol:
            sql += " WHERE symbol = ?"
            args.append(symbol.upper())
        sql += " ORDER BY id DESC LIMIT ?"
        args.append(int(limit))

        with self.db.connect() as conn:
            rows = conn.execute(sql, args).fetchall()

        out = []
        for r in rows:
            d = dict(r)
            d["metadata"] = json.loads(d.pop("metadata_json") or "{}")
            d["analysis_started"] = bool(d["analysis_started"])
            out.append(d)
        return out
