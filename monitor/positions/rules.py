# monitor/positions/rules.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from monitor.positions.models import (
    TARGET_EVENTS,
    Direction,
    EventType,
    Strategy,
    StrategyStatus,
)


@dataclass(frozen=True)
class Evaluation:
    status: StrategyStatus
    targets_hit: int
    event: Optional[EventType]
    reason: str

    @property
    def changed(self) -> bool:
        return self.event is not None


def entry_reached(s: Strategy, price: float) -> Optional[bool]:
    """
    LONG enters at or below the top of the zone, SHORT at or above the bottom.
    Returns None when the strategy has no entry bound at all.
    """
    if s.direction == Direction.LONG:
        level = s.entry_max if s.entry_max is not None else s.entry_min
        if level is None:
            return None
        return price <= level
    level = s.entry_min if s.entry_min is not None else s.entry_max
    if level is None:
        return None
    return price >= level


def target_hit(direction: Direction, target: float, price: float, epsilon: float) -> bool:
    if direction == Direction.LONG:
        return price >= target * (1 - epsilon)
    return price <= target * (1 + epsilon)


def stop_hit(direction: Direction, stop_loss: float, price: float, epsilon: float) -> bool:
    if direction == Direction.LONG:
        return price <= stop_loss * (1 + epsilon)
    return price >= stop_loss * (1 - epsilon)


def highest_target_hit(s: Strategy, price: float, epsilon: float) -> int:
    # T3 first so one tick can jump over several levels
    for idx, level in ((3, s.target_3), (2, s.target_2), (1, s.target_1)):
        if level is None:
            continue
        if target_hit(s.direction, level, price, epsilon):
            return idx
    return 0


def evaluate(s: Strategy, price: float, epsilon: float = 0.001) -> Evaluation:
    """
    One state-machine step for a strategy on a tick.

    Order: entry -> targets -> stop loss. At most one event is produced;
    the most advanced outcome of this tick wins (a target or stop beats a
    same-tick entry, a target beats a stop).
    """
    status = s.status
    hit = int(s.targets_hit or 0)
    event: Optional[EventType] = None
    reason = "no_change"

    if status not in (StrategyStatus.WAITING_ENTRY, StrategyStatus.IN_POSITION):
        return Evaluation(status, hit, None, f"inactive_status={status.value}")

    # 1) entry
    if status == StrategyStatus.WAITING_ENTRY:
        entered = entry_reached(s, price)
        if entered is False:
            return Evaluation(status, hit, None, "waiting_entry")
        if entered is True:
            status = StrategyStatus.IN_POSITION
            event = EventType.ENTRY_REACHED
            reason = "entry_reached"
        # entered is None: no entry zone, evaluate as if already in position

    # 2) targets
    best = highest_target_hit(s, price, epsilon)
    if best > hit:
        hit = best
        event = TARGET_EVENTS[best]
        reason = f"target_{best}_hit"
        if best == 3:
            return Evaluation(StrategyStatus.COMPLETED, hit, event, "target_3_completed")
        status = StrategyStatus.IN_POSITION
        return Evaluation(status, hit, event, reason)

    # 3) stop loss
    if s.stop_loss is not None and stop_hit(s.direction, s.stop_loss, price, epsilon):
        return Evaluation(StrategyStatus.STOPPED, hit, EventType.STOP_LOSS, "stop_loss_hit")

    return Evaluation(status, hit, event, reason)
