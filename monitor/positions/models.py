# monitor/positions/models.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class StrategyStatus(str, Enum):
    WAITING_ENTRY = "waiting_entry"
    IN_POSITION = "in_position"
    COMPLETED = "completed"
    STOPPED = "stopped"
    PAUSED = "paused"


ACTIVE_STATUSES = frozenset({StrategyStatus.WAITING_ENTRY, StrategyStatus.IN_POSITION})
TERMINAL_STATUSES = frozenset({StrategyStatus.COMPLETED, StrategyStatus.STOPPED})


class EventType(str, Enum):
    ENTRY_REACHED = "entry_reached"
    TARGET_1 = "target_1"
    TARGET_2 = "target_2"
    TARGET_3 = "target_3"
    STOP_LOSS = "stop_loss"


TARGET_EVENTS = {1: EventType.TARGET_1, 2: EventType.TARGET_2, 3: EventType.TARGET_3}


@dataclass
class Strategy:
    id: str
    symbol: str
    direction: Direction
    entry_min: Optional[float]
    entry_max: Optional[float]
    target_1: float
    target_2: float
    target_3: float
    stop_loss: float
    targets_hit: int = 0  # 0..3
    status: StrategyStatus = StrategyStatus.WAITING_ENTRY
    current_price: Optional[float] = None
    last_check_at: Optional[str] = None
    analysis_id: Optional[str] = None

    def targets(self) -> Dict[str, float]:
        return {
            "target_1": self.target_1,
            "target_2": self.target_2,
            "target_3": self.target_3,
            "stop_loss": self.stop_loss,
        }


@dataclass(frozen=True)
class StrategyEvent:
    strategy_id: str
    symbol: str
    direction: Direction
    event_type: EventType
    price: float
    targets: Dict[str, float]
    created_at: str

    def to_payload(self) -> dict:
        return {
            "strategyId": self.strategy_id,
            "symbol": self.symbol,
            "eventType": self.event_type.value,
            "currentPrice": self.price,
            "direction": self.direction.value,
            "targets": dict(self.targets),
        }
