from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from monitor.core.timeutil import Clock, now_ms

log = logging.getLogger("monitor.baseline")

# EWMA smoothing factor for the hourly volume baseline
ALPHA = 0.2


@dataclass
class Baseline:
    symbol: str
    value: float
    last_updated_ms: int


@dataclass(frozen=True)
class VolumeCheck:
    is_spike: bool
    ratio: float


class BaselineTracker:
    """Per-symbol exponentially smoothed quote-volume baseline."""

    def __init__(self, update_interval_ms: int = 3_600_000, clock: Optional[Clock] = None):
        self.update_interval_ms = int(update_interval_ms)
        self._clock = clock or now_ms
        self._baselines: Dict[str, Baseline] = {}

    def initialize(self, symbol: str, volume: float) -> None:
        if symbol in self._baselines:
            return
        self._baselines[symbol] = Baseline(symbol, float(volume), self._clock())
        log.info("[Baseline] Initialized %s: %.2f", symbol, volume)

    def update(self, symbol: str, current_volume: float) -> None:
        now = self._clock()
        b = self._baselines.get(symbol)
        if b is None:
            return
        if now - b.last_updated_ms < self.update_interval_ms:
            return

        old = b.value
        b.value = old * (1 - ALPHA) + float(current_volume) * ALPHA
        b.last_updated_ms = now
        log.info("[Baseline] Updated %s: %.2f -> %.2f", symbol, old, b.value)

    def check(self, symbol: str, current_volume: float, threshold: float) -> VolumeCheck:
        b = self._baselines.get(symbol)
        if b is None or b.value <= 0:
            return VolumeCheck(False, 0.0)
        ratio = float(current_volume) / b.value
        return VolumeCheck(ratio > threshold, ratio)

    def get_baseline(self, symbol: str) -> float:
        b = self._baselines.get(symbol)
        return b.value if b else 0.0

    def snapshot(self) -> Dict[str, Baseline]:
        return dict(self._baselines)

    def clear(self) -> None:
        self._baselines.clear()
