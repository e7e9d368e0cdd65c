from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from monitor.core.timeutil import Clock, ms_to_iso, now_ms
from monitor.detection.baseline import BaselineTracker
from monitor.detection.circuit_breaker import CircuitBreaker
from monitor.detection.price_window import PriceWindow
from monitor.feed.models import Tick

log = logging.getLogger("monitor.trigger")


class TriggerKind(str, Enum):
    VOLUME_SPIKE = "volume_spike"
    PRICE_MOVE = "price_move"


@dataclass(frozen=True)
class Thresholds:
    volume_ratio: float = 1.20
    price_percent: float = 0.5


@dataclass
class Trigger:
    symbol: str
    kind: TriggerKind
    value: float
    threshold: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at_ms: int = 0
    id: Optional[int] = None
    analysis_started: bool = False


class TriggerDetector:
    """
    Runs baseline, price window and circuit breaker for every tick and turns
    qualifying conditions into persisted Trigger records.
    """

    def __init__(
        self,
        baselines: BaselineTracker,
        prices: PriceWindow,
        circuit_breaker: CircuitBreaker,
        trigger_store,
        analysis_invoker=None,
        thresholds: Optional[Thresholds] = None,
        cooldown_ms: int = 300_000,
        clock: Optional[Clock] = None,
    ):
        self.baselines = baselines
        self.prices = prices
        self.circuit_breaker = circuit_breaker
        self.trigger_store = trigger_store
        self.analysis_invoker = analysis_invoker
        self._thresholds = thresholds or Thresholds()
        self.cooldown_ms = int(cooldown_ms)
        self._clock = clock or now_ms

        # (symbol, kind) -> last trigger time (ms)
        self._recent: Dict[tuple, int] = {}

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    def apply_thresholds(self, thresholds: Optional[Thresholds]) -> None:
        """Swap thresholds; None keeps the last known values."""
        if thresholds is None:
            return
        if thresholds != self._thresholds:
            log.info(
                "[CONFIG] Thresholds: volume=%s, price=%s%%",
                thresholds.volume_ratio,
                thresholds.price_percent,
            )
        self._thresholds = thresholds

    async def process_tick(self, tick: Tick) -> List[Trigger]:
        symbol = tick.symbol
        price = tick.price
        volume = tick.quote_volume
        th = self._thresholds

        self.baselines.initialize(symbol, volume)
        self.baselines.update(symbol, volume)
        volume_check = self.baselines.check(symbol, volume, th.volume_ratio)

        self.prices.add(symbol, price)
        price_check = self.prices.check(symbol, price, th.price_percent)

        breaker = self.circuit_breaker.add_price(symbol, price)
        if breaker.should_block:
            log.debug("[TRIGGER] %s suppressed: %s", symbol, breaker.reason)
            return []

        created: List[Trigger] = []

        if volume_check.is_spike:
            t = await self._create_trigger(
                symbol,
                TriggerKind.VOLUME_SPIKE,
                volume_check.ratio,
                th.volume_ratio,
                {
                    "baseline": self.baselines.get_baseline(symbol),
                    "current_volume": volume,
                    "ratio": volume_check.ratio,
                },
            )
            if t is not None:
                created.append(t)

        if price_check.is_trigger:
            t = await self._create_trigger(
                symbol,
                TriggerKind.PRICE_MOVE,
                abs(price_check.change),
                th.price_percent,
                {
                    "price_change": price_check.change,
                    "current_price": price,
                },
            )
            if t is not None:
                created.append(t)

        return created

    def in_cooldown(self, symbol: str, kind: TriggerKind) -> bool:
        last = self._recent.get((symbol, kind))
        if last is None:
            return False
        return self._clock() - last < self.cooldown_ms

    async def _create_trigger(
        self,
        symbol: str,
        kind: TriggerKind,
        value: float,
        threshold: float,
        metadata: Dict[str, Any],
    ) -> Optional[Trigger]:
        if self.in_cooldown(symbol, kind):
            return None

        # breaker may have activated while an earlier write of this tick was awaited
        if self.circuit_breaker.is_blocked(symbol):
            log.info("[TRIGGER] Blocked by circuit breaker: %s", symbol)
            return None

        # cooldown is consumed even if the write below fails
        now = self._clock()
        self._recent[(symbol, kind)] = now

        trigger = Trigger(
            symbol=symbol,
            kind=kind,
            value=round(float(value), 3),
            threshold=float(threshold),
            metadata=metadata,
            created_at_ms=now,
        )

        try:
            trigger.id = await asyncio.to_thread(
                self.trigger_store.create_trigger,
                symbol,
                kind.value,
                trigger.value,
                trigger.threshold,
                metadata,
                ms_to_iso(now),
            )
        except Exception:
            log.exception("[TRIGGER] Database error creating %s for %s", kind.value, symbol)
            return None

        log.info("[TRIGGER] Created %s for %s: %.2f (id=%s)", kind.value, symbol, value, trigger.id)

        await self._hand_off(trigger)
        return trigger

    async def _hand_off(self, trigger: Trigger) -> None:
        if self.analysis_invoker is None:
            return
        try:
            await self.analysis_invoker.invoke(trigger.symbol, trigger.id)
        except Exception as e:
            log.error("[TRIGGER] Analysis invoke failed for %s (id=%s): %s", trigger.symbol, trigger.id, e)
            return

        try:
            await asyncio.to_thread(
                self.trigger_store.update_trigger, trigger.id, {"analysis_started": True}
            )
            trigger.analysis_started = True
        except Exception:
            log.exception("[TRIGGER] Failed to mark analysis_started for id=%s", trigger.id)

    def clear(self) -> None:
        self._recent.clear()
        self.baselines.clear()
        self.prices.clear()
        self.circuit_breaker.clear()
