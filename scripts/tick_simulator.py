from __future__ import annotations

import logging
import random
import time

from crosswatch.candles.aggregator import CandleAggregator
from crosswatch.candles.intervals import get_interval
from crosswatch.candles.store import CandleStore
from crosswatch.indicators.engine import compute_indicators
from crosswatch.models.market import Tick
from crosswatch.signals.detector import SignalDetector
from crosswatch.signals.sink import LoggingAlertSink


def run(symbol: str = "btc", interval: str = "1m", seconds: int = 3600) -> None:
    """
    Generates fake ticks for `seconds` seconds and feeds them through the
    candle -> indicator -> signal pipeline.

    - We simulate 1 tick per second.
    - Price does a random walk (moves up/down a bit each tick).
    - Each time a bar rolls over we print the bar that just finished.
    - Validated crossovers are logged by LoggingAlertSink.
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

    spec = get_interval(interval)
    store = CandleStore(max_history=500)
    aggregator = CandleAggregator(store)
    detector = SignalDetector(sink=LoggingAlertSink())

    # Start at the current bar boundary so candles look clean.
    t_ms = (int(time.time() * 1000) // spec.millis) * spec.millis

    price = 100.0

    print(f"Simulating ticks for {symbol} ({interval}) for {seconds} seconds...\n")

    for _ in range(seconds):
        price = max(0.01, price + random.uniform(-0.2, 0.2))
        volume = float(random.randint(1, 50))

        tick = Tick(symbol=symbol, price=round(price, 2), volume=volume, event_time_ms=t_ms)

        delta = aggregator.on_tick(tick, spec.millis)
        candles = store.snapshot(symbol, spec.millis)

        if delta is not None and delta.appended and len(candles) > 1:
            closed = candles[-2]
            print(
                f"[CLOSED {interval}] {symbol} {closed.open_time_ms} "
                f"O={closed.open} H={closed.high} L={closed.low} C={closed.close} V={closed.volume}"
            )

        indicators = compute_indicators(candles)
        detector.process(candles, indicators.macd, symbol, tick.price)

        t_ms += 1000

    candles = store.snapshot(symbol, spec.millis)
    latest = compute_indicators(candles).latest()

    print("\nDone.")
    print(f"Candles stored: {len(candles)}")
    print(f"RSI: {latest.get('rsi')}  MACD: {latest.get('macd')}  signal: {latest.get('macd_signal')}")


if __name__ == "__main__":
    run()
