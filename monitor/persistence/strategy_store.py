# monitor/persistence/strategy_store.py

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from monitor.core.timeutil import utc_now_iso
from monitor.persistence.db import DB
from monitor.positions.models import Direction, Strategy, StrategyStatus

log = logging.getLogger("monitor.strategy_store")

_PATCHABLE = {"status", "targets_hit", "current_price", "last_check_at"}


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    return float(v)


class StrategyStore:
    def __init__(self, db: DB):
        self.db = db

    # ---------- READ ----------
    def list_active_strategies(self, status_in: Iterable[Any]) -> List[Strategy]:
        """
        Returns typed Strategy objects (not raw dicts).
        Rows that cannot be parsed are skipped and logged.
        """
        statuses = [getattr(s, "value", s) for s in status_in]
        if not statuses:
            return []

        marks = ",".join("?" for _ in statuses)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM active_strategies WHERE status IN ({marks}) ORDER BY rowid",
                statuses,
            ).fetchall()

        out: List[Strategy] = []
        for r in rows:
            try:
                out.append(self._row_to_strategy(r))
            except (KeyError, TypeError, ValueError) as e:
                log.error("[STRATEGY_STORE] Skipping bad row id=%s: %s", r["id"], e)
        return out

    def get(self, strategy_id: str) -> Optional[Strategy]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM active_strategies WHERE id = ?", (strategy_id,)
            ).fetchone()
        return self._row_to_strategy(row) if row else None

    @staticmethod
    def _row_to_strategy(r) -> Strategy:
        return Strategy(
            id=str(r["id"]),
            analysis_id=r["analysis_id"],
            symbol=(r["symbol"] or "").upper(),
            direction=Direction((r["direction"] or "").upper()),
            entry_min=_opt_float(r["entry_min"]),
            entry_max=_opt_float(r["entry_max"]),
            target_1=float(r["target_1"]),
            target_2=float(r["target_2"]),
            target_3=float(r["target_3"]),
            stop_loss=float(r["stop_loss"]),
            targets_hit=int(r["targets_hit"] or 0),
            status=StrategyStatus(r["status"]),
            current_price=_opt_float(r["current_price"]),
            last_check_at=r["last_check_at"],
        )

    # ---------- WRITE ----------
    def update_strategy(
        self,
        strategy_id: str,
        patch: Dict[str, Any],
        expected_status: Optional[str] = None,
        expected_targets_hit: Optional[int] = None,
    ) -> int:
        """
        Conditional update. The WHERE clause pins the caller's last-known
        status / targets_hit, so 0 affected rows means the record moved on.
        """
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Unsupported strategy fields: {sorted(unknown)}")
        if not patch:
            return 0

        sets = [f"{k} = ?" for k in patch] + ["updated_at = ?"]
        args: List[Any] = [getattr(v, "value", v) for v in patch.values()]
        args.append(utc_now_iso())

        where = ["id = ?"]
        args.append(strategy_id)
        if expected_status is not None:
            where.append("status = ?")
            args.append(getattr(expected_status, "value", expected_status))
        if expected_targets_hit is not None:
            where.append("targets_hit = ?")
            args.append(int(expected_targets_hit))

        with self.db.connect() as conn:
            cur = conn.execute(
                f"UPDATE active_strategies SET {', '.join(sets)} WHERE {' AND '.join(where)}",
                args,
            )
            return cur.rowcount

    def upsert_strategy(self, s: Strategy) -> None:
        """
        UPSERT a strategy definition (used by whoever owns strategies, and tests).
        """
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO active_strategies(
                    id, analysis_id, symbol, direction, entry_min, entry_max,
                    target_1, target_2, target_3, stop_loss, targets_hit, status,
                    current_price, last_check_at, updated_at
                )
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    analysis_id=excluded.analysis_id,
                    symbol=excluded.symbol,
                    direction=excluded.direction,
                    entry_min=excluded.entry_min,
                    entry_max=excluded.entry_max,
                    target_1=excluded.target_1,
                    target_2=excluded.target_2,
                    target_3=excluded.target_3,
                    stop_loss=excluded.stop_loss,
                    targets_hit=excluded.targets_hit,
                    status=excluded.status,
                    current_price=excluded.current_price,
                    last_check_at=excluded.last_check_at,
                    updated_at=excluded.updated_at
                """,
                (
                    s.id,
                    s.analysis_id,
                    s.symbol.upper(),
                    s.direction.value,
                    s.entry_min,
                    s.entry_max,
                    float(s.target_1),
                    float(s.target_2),
                    float(s.target_3),
                    float(s.stop_loss),
                    int(s.targets_hit),
                    s.status.value,
                    s.current_price,
                    s.last_check_at,
                    utc_now_iso(),
                ),
            )
