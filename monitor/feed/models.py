# monitor/feed/models.py
from __future__ import annotations

import json
import math
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from monitor.core.timeutil import now_ms


class FeedMessageError(ValueError):
    """Raised when a feed payload cannot be turned into a Tick."""


class Tick(BaseModel):
    """One validated ticker observation for a symbol."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    quote_volume: float
    timestamp_ms: int

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v: Any) -> str:
        s = str(v or "").strip().upper()
        if not s:
            raise ValueError("symbol is empty")
        return s

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("price must be a positive finite number")
        return v

    @field_validator("quote_volume")
    @classmethod
    def volume_non_negative(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError("quote_volume must be a non-negative finite number")
        return v


def _first(d: Dict[str, Any], *keys: str) -> Optional[Any]:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def parse_ticker_message(raw: Union[str, bytes, Dict[str, Any]]) -> Tick:
    """
    Accepts:
      - flat:     {"symbol": "BTCUSDT", "price": "65000.1", "quoteVolume": "1.2e9", "timestamp": 1700000000000}
      - envelope: {"stream": "btcusdt@ticker", "data": {"s": ..., "c": ..., "q": ..., "E": ...}}
    Raises FeedMessageError for anything else.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise FeedMessageError(f"invalid json: {e}") from e

    if not isinstance(raw, dict):
        raise FeedMessageError(f"unexpected payload type: {type(raw).__name__}")

    body = raw.get("data") if isinstance(raw.get("data"), dict) else raw

    symbol = _first(body, "symbol", "s")
    price = _first(body, "price", "c")
    volume = _first(body, "quoteVolume", "quote_volume", "q")
    ts = _first(body, "timestamp", "timestamp_ms", "E")

    if symbol is None or price is None or volume is None:
        raise FeedMessageError("missing symbol/price/quoteVolume")

    try:
        return Tick(
            symbol=symbol,
            price=price,
            quote_volume=volume,
            timestamp_ms=int(ts) if ts is not None else now_ms(),
        )
    except (ValidationError, TypeError, ValueError) as e:
        raise FeedMessageError(str(e)) from e
