from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from monitor.core.config import Settings
from monitor.core.timeutil import Clock, ms_to_iso, now_ms
from monitor.detection.baseline import BaselineTracker
from monitor.detection.circuit_breaker import CircuitBreaker
from monitor.detection.price_window import PriceWindow
from monitor.detection.trigger_detector import Thresholds, Trigger, TriggerDetector
from monitor.feed.models import FeedMessageError, Tick, parse_ticker_message
from monitor.ops.analysis import build_invoker
from monitor.ops.notifier import build_notifier
from monitor.persistence.config_store import MONITORED_PAIRS, ConfigProvider, ConfigStore
from monitor.persistence.db import DB
from monitor.persistence.strategy_store import StrategyStore
from monitor.persistence.system_log import SystemLogStore
from monitor.persistence.trigger_store import TriggerStore
from monitor.positions.models import StrategyEvent
from monitor.positions.tracker import PositionTracker

log = logging.getLogger("monitor.service")


@dataclass
class TickResult:
    tick: Tick
    triggers: List[Trigger] = field(default_factory=list)
    events: List[StrategyEvent] = field(default_factory=list)


@dataclass
class ServiceStats:
    ticks_processed: int = 0
    ticks_rejected: int = 0
    triggers_created: int = 0
    strategy_events: int = 0
    last_tick_at: Optional[str] = None
    last_error: Optional[str] = None


class MonitorService:
    """
    Cooperative scheduler on one event loop.

    Timers (scanner status, pair reload, threshold reload, strategy reload)
    interleave with tick handling at await points; ticks themselves are
    processed one at a time.
    The scanner status gates trigger detection only; strategies are tracked
    for as long as the service runs.
    """

    def __init__(
        self,
        detector: TriggerDetector,
        positions: PositionTracker,
        config: ConfigProvider,
        status_interval_s: float = 10.0,
        pairs_interval_s: float = 60.0,
        thresholds_interval_s: float = 60.0,
        on_subscriptions_changed: Optional[Callable[[List[str]], Awaitable[None]]] = None,
        clock: Optional[Clock] = None,
    ):
        self.detector = detector
        self.positions = positions
        self.config = config
        self.status_interval_s = float(status_interval_s)
        self.pairs_interval_s = float(pairs_interval_s)
        self.thresholds_interval_s = float(thresholds_interval_s)
        self.on_subscriptions_changed = on_subscriptions_changed
        self._clock = clock or now_ms

        self.monitored_symbols: List[str] = []
        self.is_monitoring = False
        self.is_running = False
        self.stats = ServiceStats()

        self._tick_lock = asyncio.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}

        if self.positions.on_symbols_changed is None:
            self.positions.on_symbols_changed = self._on_strategy_symbols_changed

    # -------------------------
    # Lifecycle
    # -------------------------
    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        log.info("[MONITOR] Initializing...")

        await self.refresh_thresholds()
        await self.check_and_update_status()
        await self.positions.start()

        self._spawn("status", self.status_interval_s, self.check_and_update_status)
        self._spawn("thresholds", self.thresholds_interval_s, self.refresh_thresholds)
        log.info("[MONITOR] Initialization complete")

    async def shutdown(self) -> None:
        log.info("[MONITOR] Shutting down...")
        for name in list(self._tasks):
            await self._cancel(name)
        await self.stop_monitoring()
        await self.positions.stop()
        # in-flight breaker logging/alerts are allowed to finish
        await self.detector.circuit_breaker.drain()
        self.is_running = False
        log.info("[MONITOR] Shutdown complete")

    def _spawn(self, name: str, interval_s: float, fn: Callable[[], Awaitable[Any]]) -> None:
        self._tasks[name] = asyncio.create_task(self._every(name, interval_s, fn))

    async def _cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _every(self, name: str, interval_s: float, fn: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await fn()
            except Exception as e:
                self.stats.last_error = f"{name}: {type(e).__name__}: {e}"
                log.exception("[MONITOR] %s loop error", name)

    # -------------------------
    # Config-driven state
    # -------------------------
    async def refresh_thresholds(self) -> Thresholds:
        self.detector.apply_thresholds(await self.config.get_thresholds())
        return self.detector.thresholds

    async def check_and_update_status(self) -> None:
        status = await self.config.get_scanner_status()
        if status == "running" and not self.is_monitoring:
            log.info("[STATUS] Scanner starting...")
            await self.start_monitoring()
        elif status == "stopped" and self.is_monitoring:
            log.info("[STATUS] Scanner stopping...")
            await self.stop_monitoring()

    async def start_monitoring(self) -> None:
        pairs = await self.config.get_monitored_pairs()
        if not pairs:
            log.info("[MONITOR] No pairs configured - waiting...")
            return

        await self._set_symbols(pairs)
        self.is_monitoring = True
        self._spawn("pairs", self.pairs_interval_s, self.check_and_update_pairs)
        log.info("[MONITOR] Started monitoring %d pairs", len(pairs))

    async def stop_monitoring(self) -> None:
        await self._cancel("pairs")
        if not self.is_monitoring:
            return
        self.detector.clear()
        self.is_monitoring = False
        await self._set_symbols([])
        log.info("[MONITOR] Stopped")

    async def check_and_update_pairs(self) -> None:
        pairs = await self.config.get_monitored_pairs()
        if pairs == self.monitored_symbols:
            return
        if pairs:
            log.info("[CONFIG] Pairs changed: %s", ", ".join(pairs))
        else:
            log.info("[CONFIG] No pairs configured")
        await self._set_symbols(pairs)

    async def _set_symbols(self, pairs: List[str]) -> None:
        self.monitored_symbols = list(pairs)
        if self.on_subscriptions_changed is None:
            return
        try:
            await self.on_subscriptions_changed(self.subscriptions())
        except Exception:
            log.exception("[MONITOR] Subscription callback failed")

    async def _on_strategy_symbols_changed(self, _symbols: List[str]) -> None:
        await self._set_symbols(self.monitored_symbols)

    def subscriptions(self) -> List[str]:
        """Symbols a feed transport should deliver: monitored pairs plus strategy symbols."""
        out = list(self.monitored_symbols)
        for s in self.positions.monitored_symbols():
            if s not in out:
                out.append(s)
        return out

    # -------------------------
    # Feed boundary
    # -------------------------
    async def handle_message(self, raw: Any) -> Optional[TickResult]:
        try:
            tick = parse_ticker_message(raw)
        except FeedMessageError as e:
            self.stats.ticks_rejected += 1
            log.warning("[FEED] Rejected message: %s", e)
            return None
        return await self.handle_tick(tick)

    async def handle_tick(self, tick: Tick) -> TickResult:
        result = TickResult(tick=tick)

        async with self._tick_lock:
            if self.is_monitoring and tick.symbol in self.monitored_symbols:
                try:
                    result.triggers = await self.detector.process_tick(tick)
                except Exception as e:
                    self.stats.last_error = f"detector: {type(e).__name__}: {e}"
                    log.exception("[TRIGGER] Failed processing %s", tick.symbol)

            try:
                result.events = await self.positions.check_price(tick.symbol, tick.price)
            except Exception as e:
                self.stats.last_error = f"positions: {type(e).__name__}: {e}"
                log.exception("[POSITION_MONITOR] Failed processing %s", tick.symbol)

            self.stats.ticks_processed += 1
            self.stats.triggers_created += len(result.triggers)
            self.stats.strategy_events += len(result.events)
            self.stats.last_tick_at = ms_to_iso(self._clock())

        return result

    def status(self) -> dict:
        th = self.detector.thresholds
        return {
            "running": self.is_running,
            "monitoring": self.is_monitoring,
            "monitored_symbols": list(self.monitored_symbols),
            "strategy_symbols": self.positions.monitored_symbols(),
            "thresholds": {"volume_ratio": th.volume_ratio, "price_percent": th.price_percent},
            "active_circuit_breakers": len(self.detector.circuit_breaker.active_breakers()),
            "stats": {
                "ticks_processed": self.stats.ticks_processed,
                "ticks_rejected": self.stats.ticks_rejected,
                "triggers_created": self.stats.triggers_created,
                "strategy_events": self.stats.strategy_events,
                "last_tick_at": self.stats.last_tick_at,
                "last_error": self.stats.last_error,
            },
        }


def seed_config(store: ConfigStore, s: Settings) -> None:
    """Write SEED_PAIRS only when monitored_pairs has never been set."""
    if not s.SEED_PAIRS:
        return
    if store.get(MONITORED_PAIRS, default=None) is None:
        store.set(MONITORED_PAIRS, list(s.SEED_PAIRS))
        log.info("[CONFIG] Seeded monitored_pairs: %s", ", ".join(s.SEED_PAIRS))


def build_service(s: Settings, db: Optional[DB] = None, clock: Optional[Clock] = None) -> MonitorService:
    """Wire every component from settings. No module-level singletons."""
    db = db or DB(s.DB_PATH)
    clock = clock or now_ms

    config_store = ConfigStore(db)
    seed_config(config_store, s)

    log_store = SystemLogStore(db, jsonl_path=s.AUDIT_JSONL_PATH)
    alerter = build_notifier(s.ALERT_URL, s.API_TOKEN, s.HTTP_TIMEOUT_SECONDS, "alert")
    notifier = build_notifier(s.NOTIFY_URL, s.API_TOKEN, s.HTTP_TIMEOUT_SECONDS, "notify")

    default_thresholds = Thresholds(
        volume_ratio=s.VOLUME_SPIKE_THRESHOLD,
        price_percent=s.PRICE_MOVE_THRESHOLD_PCT,
    )

    detector = TriggerDetector(
        baselines=BaselineTracker(s.VOLUME_BASELINE_UPDATE_SECONDS * 1000, clock=clock),
        prices=PriceWindow(s.PRICE_WINDOW_SECONDS * 1000, clock=clock),
        circuit_breaker=CircuitBreaker(
            window_ms=s.CIRCUIT_BREAKER_WINDOW_SECONDS * 1000,
            threshold=s.CIRCUIT_BREAKER_THRESHOLD,
            cooldown_ms=s.CIRCUIT_BREAKER_COOLDOWN_SECONDS * 1000,
            clock=clock,
            log_store=log_store,
            notifier=alerter,
        ),
        trigger_store=TriggerStore(db),
        analysis_invoker=build_invoker(s.ANALYSIS_URL, s.API_TOKEN, s.HTTP_TIMEOUT_SECONDS),
        thresholds=default_thresholds,
        cooldown_ms=s.TRIGGER_COOLDOWN_SECONDS * 1000,
        clock=clock,
    )

    positions = PositionTracker(
        StrategyStore(db),
        notifier=notifier,
        epsilon=s.POSITION_EPSILON,
        silent_update_min_change=s.SILENT_UPDATE_MIN_CHANGE,
        reload_interval_s=s.POSITION_RELOAD_INTERVAL_SECONDS,
        clock=clock,
    )

    return MonitorService(
        detector,
        positions,
        ConfigProvider(config_store, default_thresholds=default_thresholds),
        status_interval_s=s.STATUS_CHECK_INTERVAL_SECONDS,
        pairs_interval_s=s.PAIR_RELOAD_INTERVAL_SECONDS,
        thresholds_interval_s=s.THRESHOLD_RELOAD_INTERVAL_SECONDS,
        clock=clock,
    )
