from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from crosswatch.candles.intervals import align_open_time
from crosswatch.candles.store import CandleStore
from crosswatch.models.market import Candle, Tick

log = logging.getLogger("candle_aggregator")


@dataclass(frozen=True)
class CandleDelta:
    """
    What one tick did to a series.

    appended=True: a new bar was opened with this tick
    appended=False: the last bar was updated in place
    candle: copy of the affected candle after the change
    """
    appended: bool
    candle: Candle


class CandleAggregator:
    """
    Folds ticks into interval-aligned OHLC candles.

    - bar open time = floor(event_time / interval) * interval
    - a tick in a new bar appends a candle (open=high=low=close=price)
    - a tick in the current bar updates it in place
    - a tick older than the current bar is dropped (keeps open times increasing)

    Changing interval never reinterpolates: call reset() and reseed the
    new interval from a historical fetch.
    """

    def __init__(self, store: CandleStore):
        self.store = store

    def on_tick(self, tick: Tick, interval_ms: int) -> Optional[CandleDelta]:
        """
        Process one tick.
        Returns the resulting delta, or None when the tick was dropped.
        """
        symbol = tick.symbol
        open_time = align_open_time(tick.event_time_ms, interval_ms)

        with self.store.lock:
            current = self.store.get_last(symbol, interval_ms)

            # Drop out-of-order ticks (older than current candle start)
            if current is not None and open_time < current.open_time_ms:
                log.debug(
                    "Dropping out-of-order tick symbol=%s t=%d bar=%d",
                    symbol,
                    tick.event_time_ms,
                    current.open_time_ms,
                )
                return None

            # Still inside current bar -> update.
            if current is not None and open_time == current.open_time_ms:
                current.update(price=tick.price, volume=tick.volume)
                self.store.touch(symbol, interval_ms)
                return CandleDelta(appended=False, candle=current.copy())

            # No bar yet, or the bar rolled -> start a new one.
            candle = Candle.from_tick(open_time, tick)
            self.store.append(symbol, interval_ms, candle)
            return CandleDelta(appended=True, candle=candle.copy())

    def reseed(self, symbol: str, interval_ms: int, candles: List[Candle]) -> None:
        """Replace the series with freshly fetched history."""
        self.store.replace_history(symbol, interval_ms, candles)

    def reset(self, symbol: str) -> None:
        """Discard incremental state for every interval of `symbol`."""
        self.store.drop_symbol(symbol)
