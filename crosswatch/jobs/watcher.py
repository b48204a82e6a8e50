from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

from crosswatch.candles.aggregator import CandleAggregator
from crosswatch.candles.intervals import Interval, get_interval
from crosswatch.candles.store import CandleStore
from crosswatch.indicators.engine import IndicatorConfig, IndicatorSnapshot, compute_indicators
from crosswatch.errors import FetchError
from crosswatch.models.market import Candle, StreamEvent, Tick
from crosswatch.models.signal import SignalValidation
from crosswatch.providers.base import MarketDataProvider
from crosswatch.signals.detector import SignalConfig, SignalDetector
from crosswatch.signals.sink import AlertSink
from crosswatch.streams.registry import SubscriptionRegistry

log = logging.getLogger("symbol_watcher")

# A series with no tick or reseed for this long is reported as stale.
STALE_AFTER_SECONDS = 60


def apply_provisional_close(candle: Candle, price: float) -> None:
    """
    Overwrite the still-forming last candle's close with a more precise
    current price, widening high/low so the candle stays consistent.
    """
    candle.close = price
    candle.high = max(candle.high, price)
    candle.low = min(candle.low, price)


class SymbolWatcher:
    """
    Pipeline for one symbol:

    - start(): seed the series from history, then subscribe to live ticks
    - on_tick(): tick -> candle series -> indicators -> crossover check -> sink
    - set_interval(): drop incremental state and reseed at the new interval
    - stop(): unsubscribe (closes the stream if we were the last listener)
    - every refresh_seconds (when set), and once after a reconnect, the
      history is refetched so bars missed while disconnected are filled in

    Ticks arriving while a reseed is in flight are dropped; the fetched
    history already covers them.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        provider: MarketDataProvider,
        registry: SubscriptionRegistry,
        store: Optional[CandleStore] = None,
        sink: Optional[AlertSink] = None,
        signal_config: Optional[SignalConfig] = None,
        indicator_config: Optional[IndicatorConfig] = None,
        refresh_seconds: Optional[float] = None,
    ) -> None:
        self.symbol = symbol.strip().lower()
        self.interval: Interval = get_interval(interval)
        self.provider = provider
        self.registry = registry
        self.store = store or CandleStore(max_history=500)
        self.aggregator = CandleAggregator(self.store)
        self.detector = SignalDetector(sink=sink, config=signal_config)
        self.indicator_config = indicator_config or IndicatorConfig()

        self.indicators: Optional[IndicatorSnapshot] = None
        self.last_price: Optional[float] = None
        self._seeding = False
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.refresh_seconds = refresh_seconds
        self.stream_failures = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._catchup_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    @property
    def stream_state(self) -> Optional[str]:
        connection = self.registry.connection_for(self.symbol)
        return connection.state.value if connection else None

    async def start(self) -> None:
        await self.reseed()
        if self._unsubscribe is None:
            self._unsubscribe = self.registry.subscribe(
                self.symbol, self.on_tick, on_event=self.on_stream_event
            )
            log.info("Watching symbol=%s interval=%s", self.symbol, self.interval.token)
            if self.refresh_seconds:
                self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    def stop(self) -> None:
        for task in (self._refresh_task, self._catchup_task):
            if task is not None and not task.done():
                task.cancel()
        self._refresh_task = self._catchup_task = None

        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            log.info("Stopped watching symbol=%s", self.symbol)

    # -------------------------
    # Stream events
    # -------------------------
    def on_stream_event(self, event: StreamEvent) -> None:
        if event is StreamEvent.RECONNECTED:
            # Ticks missed while disconnected only come back with a full refetch.
            log.info("Stream reconnected, refetching history symbol=%s", self.symbol)
            if self._catchup_task is None or self._catchup_task.done():
                self._catchup_task = asyncio.get_running_loop().create_task(self.refresh())
        elif event is StreamEvent.GAVE_UP:
            self.stream_failures += 1
            log.warning(
                "Stream gave up symbol=%s failures=%d; reopening on next refresh",
                self.symbol,
                self.stream_failures,
            )

    async def _refresh_loop(self) -> None:
        """
        Every refresh_seconds:
        - reopen the stream if it gave up after exhausting retries
        - refetch history (the exchange's bars replace ours)
        """
        while True:
            await asyncio.sleep(self.refresh_seconds)
            if self.registry.reopen(self.symbol):
                log.info("Reopening stream symbol=%s", self.symbol)
            await self.refresh()

    async def refresh(self) -> None:
        """reseed(), logging instead of raising on fetch failures."""
        try:
            await self.reseed()
        except FetchError as e:
            log.warning("History refresh failed symbol=%s error=%s", self.symbol, e)

    # -------------------------
    # History
    # -------------------------
    async def reseed(self) -> int:
        """
        Fetch the candle history for the current interval and replace the series.
        Returns the number of candles stored. FetchError propagates.
        """
        self._generation += 1
        generation = self._generation
        interval = self.interval
        self._seeding = True
        try:
            candles = await asyncio.to_thread(self.provider.fetch_candles, self.symbol, interval.token)
            price = None
            if candles:
                price = await asyncio.to_thread(self.provider.fetch_current_price, self.symbol)
                apply_provisional_close(candles[-1], price)
        finally:
            if generation == self._generation:
                self._seeding = False

        # A newer reseed (interval switch) started while we were fetching.
        if generation != self._generation:
            return 0

        self.aggregator.reseed(self.symbol, interval.millis, candles)
        log.info(
            "Seeded symbol=%s interval=%s candles=%d",
            self.symbol,
            interval.token,
            len(candles),
        )
        if price is not None:
            self.last_price = price
            self.recompute(price)
        return len(candles)

    async def set_interval(self, token: str) -> None:
        interval = get_interval(token)
        if interval == self.interval:
            return
        self.aggregator.reset(self.symbol)
        self.interval = interval
        self.indicators = None
        await self.reseed()

    # -------------------------
    # Live path
    # -------------------------
    def on_tick(self, tick: Tick) -> Optional[SignalValidation]:
        if self._seeding:
            log.debug("Dropping tick during reseed symbol=%s", self.symbol)
            return None

        delta = self.aggregator.on_tick(tick, self.interval.millis)
        if delta is None:
            return None

        self.last_price = tick.price
        return self.recompute(tick.price)

    def recompute(self, price: float) -> Optional[SignalValidation]:
        candles = self.store.snapshot(self.symbol, self.interval.millis)
        if not candles:
            return None
        self.indicators = compute_indicators(candles, self.indicator_config)
        return self.detector.process(candles, self.indicators.macd, self.symbol, price)

    def candles(self) -> List[Candle]:
        return self.store.snapshot(self.symbol, self.interval.millis)

    def snapshot(self) -> Dict[str, Any]:
        candles = self.candles()
        last = candles[-1] if candles else None
        validation = self.detector.last_validation
        indicators = self.indicators

        return {
            "symbol": self.symbol,
            "interval": self.interval.token,
            "candles": len(candles),
            "last_candle": asdict(last) if last else None,
            "last_price": self.last_price,
            "fresh": self.store.is_fresh(self.symbol, self.interval.millis, STALE_AFTER_SECONDS),
            "connection_state": self.stream_state,
            "stream_failures": self.stream_failures,
            "indicators": indicators.latest() if indicators else {},
            "histogram_state": (
                indicators.histogram_state[-1].value
                if indicators and indicators.histogram_state
                else None
            ),
            "last_validation": validation.model_dump() if validation else None,
        }
