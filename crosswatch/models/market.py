from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Tick:
    """
    Tick = a single live price update for one symbol.

    symbol: lower-case symbol key (e.g., btc)
    price: last traded price
    volume: volume attributed to this tick
    event_time_ms: exchange event time (epoch millis)
    price_change / price_change_percent: rolling 24h change, when the stream sends it
    """
    symbol: str
    price: float
    volume: float
    event_time_ms: int
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None


@dataclass
class Candle:
    """
    Candle (OHLCV) for one interval-aligned bar.

    open_time_ms: the aligned start of the bar (epoch millis)
    open/high/low/close: prices during the bar
    volume: summed volume during the bar
    """
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_tick(cls, open_time_ms: int, tick: Tick) -> "Candle":
        return cls(
            open_time_ms=open_time_ms,
            open=tick.price,
            high=tick.price,
            low=tick.price,
            close=tick.price,
            volume=tick.volume,
        )

    def update(self, price: float, volume: float) -> None:
        """Update this candle with a new tick."""
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += volume

    def is_consistent(self) -> bool:
        return self.low <= min(self.open, self.close) <= max(self.open, self.close) <= self.high

    def copy(self) -> "Candle":
        return replace(self)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class StreamEvent(str, Enum):
    """Lifecycle events a connection reports to its subscribers."""
    RECONNECTED = "reconnected"  # back to OPEN after a peer close
    GAVE_UP = "gave_up"  # retries exhausted, connection is CLOSED
