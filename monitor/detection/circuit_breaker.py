from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Set

from monitor.core.timeutil import Clock, ms_to_iso, now_ms
from monitor.detection.price_window import PricePoint, prune

log = logging.getLogger("monitor.circuit_breaker")


@dataclass(frozen=True)
class CircuitBreakerState:
    symbol: str
    activated_at_ms: int
    expires_at_ms: int
    reason: str
    change_percent: float

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "activated_at": ms_to_iso(self.activated_at_ms),
            "expires_at": ms_to_iso(self.expires_at_ms),
            "reason": self.reason,
            "price_change_percent": self.change_percent,
        }


@dataclass(frozen=True)
class BreakerCheck:
    should_block: bool
    reason: Optional[str] = None


class CircuitBreaker:
    """
    Flash-crash lock per symbol.

    Keeps its own (longer) price window. When the move from the oldest point
    in that window reaches the threshold, the symbol is locked for `cooldown_ms`.
    Activation is persisted and alerted in the background; those side effects
    never raise into detection.
    """

    def __init__(
        self,
        window_ms: int = 900_000,
        threshold: float = 0.05,
        cooldown_ms: int = 1_800_000,
        clock: Optional[Clock] = None,
        log_store=None,
        notifier=None,
    ):
        self.window_ms = int(window_ms)
        self.threshold = float(threshold)
        self.cooldown_ms = int(cooldown_ms)
        self._clock = clock or now_ms
        self.log_store = log_store
        self.notifier = notifier

        self._points: Dict[str, Deque[PricePoint]] = defaultdict(deque)
        self._active: Dict[str, CircuitBreakerState] = {}
        self._tasks: Set[asyncio.Task] = set()

    def add_price(self, symbol: str, price: float) -> BreakerCheck:
        now = self._clock()
        points = self._points[symbol]
        points.append(PricePoint(float(price), now))
        prune(points, now - self.window_ms)

        active = self._active.get(symbol)
        if active is not None:
            if now < active.expires_at_ms:
                return BreakerCheck(
                    True, f"Circuit breaker active until {ms_to_iso(active.expires_at_ms)}"
                )
            del self._active[symbol]
            log.info("[CIRCUIT_BREAKER] Expired for %s, resuming normal operation", symbol)

        if len(points) < 2:
            return BreakerCheck(False)

        oldest = points[0].price
        if oldest <= 0:
            return BreakerCheck(False)

        change = (float(price) - oldest) / oldest
        if abs(change) < self.threshold:
            return BreakerCheck(False)

        direction = "UP" if change > 0 else "DOWN"
        window_min = self.window_ms // 60_000
        reason = f"Flash {direction}: {change * 100:.2f}% in {window_min} minutes"
        state = CircuitBreakerState(
            symbol=symbol,
            activated_at_ms=now,
            expires_at_ms=now + self.cooldown_ms,
            reason=reason,
            change_percent=change * 100,
        )
        self._active[symbol] = state
        log.warning("[CIRCUIT_BREAKER] ACTIVATED for %s: %s", symbol, reason)

        self._spawn_activation_side_effects(state)
        return BreakerCheck(True, reason)

    def is_blocked(self, symbol: str) -> bool:
        active = self._active.get(symbol)
        if active is None:
            return False
        if self._clock() >= active.expires_at_ms:
            del self._active[symbol]
            return False
        return True

    def active_breakers(self) -> List[CircuitBreakerState]:
        now = self._clock()
        for sym in [s for s, st in self._active.items() if now >= st.expires_at_ms]:
            del self._active[sym]
        return list(self._active.values())

    def clear(self) -> None:
        self._points.clear()
        self._active.clear()

    async def drain(self) -> None:
        """Wait for in-flight activation side effects (shutdown / tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------
    # Side effects (fire-and-forget)
    # -------------------------
    def _spawn_activation_side_effects(self, state: CircuitBreakerState) -> None:
        if self.log_store is None and self.notifier is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(
                "[CIRCUIT_BREAKER] No running event loop; activation for %s not recorded",
                state.symbol,
            )
            return
        task = loop.create_task(self._record_activation(state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record_activation(self, state: CircuitBreakerState) -> None:
        if self.log_store is not None:
            try:
                await asyncio.to_thread(self.log_store.insert_circuit_breaker_log, state)
                await asyncio.to_thread(
                    self.log_store.insert_system_log,
                    level="WARN",
                    category="CircuitBreaker",
                    message=f"Circuit breaker activated for {state.symbol}",
                    metadata={
                        "symbol": state.symbol,
                        "reason": state.reason,
                        "priceChangePercent": state.change_percent,
                        "expiresAt": ms_to_iso(state.expires_at_ms),
                    },
                )
            except Exception:
                log.exception("[CIRCUIT_BREAKER] Failed to log activation for %s", state.symbol)

        if self.notifier is not None:
            payload = {
                "action": "send_circuit_breaker_alert",
                "data": {
                    "symbol": state.symbol,
                    "reason": state.reason,
                    "priceChangePercent": state.change_percent,
                    "expiresAt": ms_to_iso(state.expires_at_ms),
                    "cooldownMinutes": self.cooldown_ms / 60_000,
                },
            }
            try:
                ok = await self.notifier.send(payload)
            except Exception:
                log.exception("[CIRCUIT_BREAKER] Alert error for %s", state.symbol)
                return
            if ok:
                log.info("[CIRCUIT_BREAKER] Alert sent for %s", state.symbol)
            else:
                log.error("[CIRCUIT_BREAKER] Alert failed for %s", state.symbol)
