from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from monitor.core.timeutil import Clock, ms_to_iso, now_ms
from monitor.positions.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Strategy,
    StrategyEvent,
    StrategyStatus,
)
from monitor.positions.rules import evaluate

log = logging.getLogger("monitor.positions")


class PositionTracker:
    """
    Tracks active strategies per symbol and advances their state on each tick.

    Every write is conditional on the tracker's last-known (status, targets_hit).
    A write that matches zero rows means someone else moved the record first:
    the event is discarded and the strategy is dropped until the next reload.

    Strategies are addressed by id. A reload may swap the tracked objects
    while a write is in flight; results are applied to whatever object is
    tracked under that id once the write returns.
    """

    def __init__(
        self,
        strategy_store,
        notifier=None,
        epsilon: float = 0.001,
        silent_update_min_change: float = 0.001,
        reload_interval_s: float = 15.0,
        clock: Optional[Clock] = None,
        on_symbols_changed: Optional[Callable[[List[str]], Awaitable[None]]] = None,
    ):
        self.strategy_store = strategy_store
        self.notifier = notifier
        self.epsilon = float(epsilon)
        self.silent_update_min_change = float(silent_update_min_change)
        self.reload_interval_s = float(reload_interval_s)
        self._clock = clock or now_ms
        self.on_symbols_changed = on_symbols_changed

        self._strategies: Dict[str, List[Strategy]] = {}
        self._latest_prices: Dict[str, float] = {}
        self._reload_task: Optional[asyncio.Task] = None
        self.is_active = False

    # -------------------------
    # Lifecycle
    # -------------------------
    async def start(self) -> None:
        if self.is_active:
            return
        self.is_active = True
        await self.reload()
        self._reload_task = asyncio.create_task(self._reload_loop())
        log.info("[POSITION_MONITOR] Started")

    async def stop(self) -> None:
        task, self._reload_task = self._reload_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._strategies.clear()
        self.is_active = False
        log.info("[POSITION_MONITOR] Stopped")

    async def _reload_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reload_interval_s)
            await self.reload()

    async def reload(self) -> None:
        try:
            rows = await asyncio.to_thread(
                self.strategy_store.list_active_strategies, ACTIVE_STATUSES
            )
        except Exception:
            log.exception("[POSITION_MONITOR] Load error")
            return

        grouped: Dict[str, List[Strategy]] = {}
        for s in rows:
            if s.status not in ACTIVE_STATUSES:
                continue
            grouped.setdefault(s.symbol, []).append(s)

        previous = set(self._strategies)
        self._strategies = grouped
        if rows:
            log.info(
                "[POSITION_MONITOR] Loaded %d strategies for %d symbols",
                len(rows),
                len(grouped),
            )

        if set(grouped) != previous and self.on_symbols_changed is not None:
            try:
                await self.on_symbols_changed(self.monitored_symbols())
            except Exception:
                log.exception("[POSITION_MONITOR] Symbol change callback failed")

    # -------------------------
    # Inspection
    # -------------------------
    def has_active_strategies(self) -> bool:
        return bool(self._strategies)

    def monitored_symbols(self) -> List[str]:
        return list(self._strategies.keys())

    def strategies_for(self, symbol: str) -> List[Strategy]:
        return list(self._strategies.get(symbol, ()))

    def latest_price(self, symbol: str) -> Optional[float]:
        return self._latest_prices.get(symbol)

    # -------------------------
    # Tick handling
    # -------------------------
    async def check_price(self, symbol: str, price: float) -> List[StrategyEvent]:
        self._latest_prices[symbol] = price

        events: List[StrategyEvent] = []
        for strategy_id in [s.id for s in self.strategies_for(symbol)]:
            # re-resolve: an earlier await may have reloaded or dropped it
            s = self._current(symbol, strategy_id)
            if s is None:
                continue
            ev = await self._check_strategy(s, price)
            if ev is not None:
                events.append(ev)
        return events

    async def _check_strategy(self, s: Strategy, price: float) -> Optional[StrategyEvent]:
        result = evaluate(s, price, self.epsilon)
        now_iso = ms_to_iso(self._clock())

        if not result.changed:
            await self._silent_update(s, price, now_iso)
            return None

        patch = {
            "status": result.status.value,
            "targets_hit": result.targets_hit,
            "current_price": price,
            "last_check_at": now_iso,
        }
        rows = await self._conditional_update(s, patch)
        if rows is None:
            return None
        if rows == 0:
            log.warning(
                "[POSITION_MONITOR] %s %s changed elsewhere; discarding %s",
                s.symbol,
                s.id,
                result.event.value,
            )
            self._drop(s.symbol, s.id)
            return None

        self._apply(s.symbol, s.id, price, now_iso, result.status, result.targets_hit)

        event = StrategyEvent(
            strategy_id=s.id,
            symbol=s.symbol,
            direction=s.direction,
            event_type=result.event,
            price=price,
            targets=s.targets(),
            created_at=now_iso,
        )
        log.info(
            "[POSITION_MONITOR] %s hit for %s (%s) at %s",
            result.event.value.upper(),
            s.symbol,
            s.id,
            price,
        )
        await self._notify(event)
        return event

    async def _silent_update(self, s: Strategy, price: float, now_iso: str) -> None:
        last = s.current_price
        if last and last > 0:
            if abs(price - last) / last <= self.silent_update_min_change:
                return

        patch = {"current_price": price, "last_check_at": now_iso}
        rows = await self._conditional_update(s, patch)
        if rows is None:
            return
        if rows == 0:
            log.info("[POSITION_MONITOR] %s %s no longer matches; dropping", s.symbol, s.id)
            self._drop(s.symbol, s.id)
            return
        self._apply(s.symbol, s.id, price, now_iso)

    async def _conditional_update(self, s: Strategy, patch: dict) -> Optional[int]:
        try:
            return await asyncio.to_thread(
                self.strategy_store.update_strategy,
                s.id,
                patch,
                expected_status=s.status.value,
                expected_targets_hit=s.targets_hit,
            )
        except Exception:
            log.exception("[POSITION_MONITOR] Update error for %s", s.id)
            return None

    async def _notify(self, event: StrategyEvent) -> None:
        if self.notifier is None:
            return
        try:
            ok = await self.notifier.send(event.to_payload())
        except Exception:
            log.exception("[POSITION_MONITOR] Notification error for %s", event.event_type.value)
            return
        if ok:
            log.info("[POSITION_MONITOR] Notification sent for %s", event.event_type.value)
        else:
            log.error("[POSITION_MONITOR] Notification failed for %s", event.event_type.value)

    def _current(self, symbol: str, strategy_id: str) -> Optional[Strategy]:
        for x in self._strategies.get(symbol, ()):
            if x.id == strategy_id:
                return x
        return None

    def _apply(
        self,
        symbol: str,
        strategy_id: str,
        price: float,
        now_iso: str,
        status: Optional[StrategyStatus] = None,
        targets_hit: Optional[int] = None,
    ) -> None:
        """Copy a committed write onto the tracked object for this id."""
        cur = self._current(symbol, strategy_id)
        if cur is None:
            return
        if status is not None:
            cur.status = status
        if targets_hit is not None:
            cur.targets_hit = targets_hit
        cur.current_price = price
        cur.last_check_at = now_iso
        if cur.status in TERMINAL_STATUSES:
            self._drop(symbol, strategy_id)

    def _drop(self, symbol: str, strategy_id: str) -> None:
        remaining = [x for x in self._strategies.get(symbol, ()) if x.id != strategy_id]
        if remaining:
            self._strategies[symbol] = remaining
        else:
            self._strategies.pop(symbol, None)
