from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from monitor.core.timeutil import Clock, now_ms


@dataclass(frozen=True)
class PricePoint:
    price: float
    observed_at_ms: int


@dataclass(frozen=True)
class PriceCheck:
    is_trigger: bool
    change: float  # signed percent


def prune(points: Deque[PricePoint], cutoff_ms: int) -> None:
    """Drop points observed at or before cutoff (points arrive in time order)."""
    while points and points[0].observed_at_ms <= cutoff_ms:
        points.popleft()


class PriceWindow:
    """
    Per-symbol sliding window of recent prices.

    The move is measured from the oldest surviving point, not a regression,
    so a 5 minute window reports "change since ~5 minutes ago".
    """

    def __init__(self, window_ms: int = 300_000, clock: Optional[Clock] = None):
        self.window_ms = int(window_ms)
        self._clock = clock or now_ms
        self._points: Dict[str, Deque[PricePoint]] = defaultdict(deque)

    def add(self, symbol: str, price: float) -> None:
        now = self._clock()
        points = self._points[symbol]
        points.append(PricePoint(float(price), now))
        prune(points, now - self.window_ms)

    def get_change(self, symbol: str, current_price: float) -> float:
        points = self._points.get(symbol)
        if not points:
            return 0.0
        oldest = points[0].price
        if oldest <= 0:
            return 0.0
        return (float(current_price) - oldest) / oldest * 100.0

    def check(self, symbol: str, current_price: float, threshold_percent: float) -> PriceCheck:
        change = self.get_change(symbol, current_price)
        return PriceCheck(abs(change) >= threshold_percent, change)

    def size(self, symbol: str) -> int:
        return len(self._points.get(symbol, ()))

    def clear(self) -> None:
        self._points.clear()
