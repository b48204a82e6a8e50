from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional, Tuple

from crosswatch.models.market import Candle


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


SeriesKey = Tuple[str, int]


@dataclass
class CandleStore:
    """
    In-memory candle series + freshness tracking.

    series[(symbol, interval_ms)]       -> ordered candles; only the last one is still forming
    last_updated[(symbol, interval_ms)] -> when we last touched that series

    Writers (the aggregator, a reseed) mutate under `lock`. Readers call
    snapshot(), which copies the candles under the same lock, so a reader
    never sees a half-updated last candle.
    """
    max_history: int = 500
    series: Dict[SeriesKey, List[Candle]] = field(default_factory=dict)
    last_updated: Dict[SeriesKey, datetime] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def touch(self, symbol: str, interval_ms: int) -> None:
        """Mark this symbol/interval as updated right now."""
        self.last_updated[(symbol, interval_ms)] = utcnow()

    def get_last(self, symbol: str, interval_ms: int) -> Optional[Candle]:
        """The live last candle (writers only)."""
        candles = self.series.get((symbol, interval_ms))
        return candles[-1] if candles else None

    def append(self, symbol: str, interval_ms: int, candle: Candle) -> None:
        with self.lock:
            candles = self.series.setdefault((symbol, interval_ms), [])
            candles.append(candle)
            if len(candles) > self.max_history:
                del candles[:-self.max_history]
            self.touch(symbol, interval_ms)

    def snapshot(self, symbol: str, interval_ms: int) -> List[Candle]:
        """Copy of the series, safe to read while ticks keep arriving."""
        with self.lock:
            return [c.copy() for c in self.series.get((symbol, interval_ms), [])]

    def get_last_updated(self, symbol: str, interval_ms: int) -> Optional[datetime]:
        return self.last_updated.get((symbol, interval_ms))

    def has_any_data(self, symbol: str, interval_ms: int) -> bool:
        return len(self.series.get((symbol, interval_ms), [])) > 0

    def is_fresh(self, symbol: str, interval_ms: int, max_age_seconds: int) -> bool:
        """
        Freshness check:
        - Must have some data
        - last_updated must be within max_age_seconds
        """
        if not self.has_any_data(symbol, interval_ms):
            return False

        last = self.get_last_updated(symbol, interval_ms)
        if last is None:
            return False

        return (utcnow() - last) <= timedelta(seconds=max_age_seconds)

    def replace_history(self, symbol: str, interval_ms: int, candles: List[Candle]) -> None:
        """
        Replace a series in one shot.
        Used when (re)seeding from a historical fetch.
        """
        with self.lock:
            self.series[(symbol, interval_ms)] = list(candles[-self.max_history:])
            self.touch(symbol, interval_ms)

    def drop_symbol(self, symbol: str) -> None:
        """Forget every series of `symbol` (all intervals)."""
        with self.lock:
            for key in [k for k in self.series if k[0] == symbol]:
                del self.series[key]
                self.last_updated.pop(key, None)
