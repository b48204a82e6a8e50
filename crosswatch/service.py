from __future__ import annotations

import logging
from typing import Dict, List, Optional

from crosswatch.candles.store import CandleStore
from crosswatch.config import Settings
from crosswatch.errors import FetchError
from crosswatch.jobs.watcher import SymbolWatcher
from crosswatch.providers.base import MarketDataProvider
from crosswatch.providers.loader import get_provider
from crosswatch.signals.detector import SignalConfig
from crosswatch.signals.sink import AlertSink, LoggingAlertSink
from crosswatch.streams.connection import connection_factory
from crosswatch.streams.registry import SubscriptionRegistry

log = logging.getLogger("watch_service")


def build_registry(settings: Settings) -> SubscriptionRegistry:
    return SubscriptionRegistry(
        connection_factory(
            url=settings.binance_ws_url,
            quote_asset=settings.quote_asset,
            handshake_timeout=settings.ws_handshake_timeout,
            max_attempts=settings.ws_max_attempts,
            base_delay=settings.ws_base_delay,
            max_delay=settings.ws_max_delay,
        )
    )


def signal_config_from(settings: Settings) -> SignalConfig:
    return SignalConfig(
        volume_threshold_multiplier=settings.signal_volume_multiplier,
        trend_period=settings.signal_trend_period,
        min_histogram_diff=settings.signal_min_histogram_diff,
        consecutive_bars=settings.signal_consecutive_bars,
    )


class WatchService:
    """
    Owns the moving parts for a running process: one registry, one
    provider, one candle store and a SymbolWatcher per watched symbol.
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[MarketDataProvider] = None,
        registry: Optional[SubscriptionRegistry] = None,
        sink: Optional[AlertSink] = None,
    ) -> None:
        self.settings = settings
        self.provider = provider or get_provider(settings)
        self.registry = registry or build_registry(settings)
        self.sink = sink or LoggingAlertSink()
        self.store = CandleStore(max_history=500)
        self.signal_config = signal_config_from(settings)
        self.watchers: Dict[str, SymbolWatcher] = {}

    def get(self, symbol: str) -> Optional[SymbolWatcher]:
        return self.watchers.get(symbol.strip().lower())

    async def watch(self, symbol: str, interval: Optional[str] = None) -> SymbolWatcher:
        key = symbol.strip().lower()
        watcher = self.watchers.get(key)
        if watcher is not None:
            if interval:
                await watcher.set_interval(interval)
            return watcher

        watcher = SymbolWatcher(
            symbol=key,
            interval=interval or self.settings.default_interval,
            provider=self.provider,
            registry=self.registry,
            store=self.store,
            sink=self.sink,
            signal_config=self.signal_config,
            refresh_seconds=self.settings.history_refresh_seconds or None,
        )
        await watcher.start()
        self.watchers[key] = watcher
        return watcher

    def unwatch(self, symbol: str) -> bool:
        key = symbol.strip().lower()
        watcher = self.watchers.pop(key, None)
        if watcher is None:
            return False
        watcher.stop()
        self.store.drop_symbol(key)
        return True

    async def start(self, symbols: Optional[List[str]] = None) -> None:
        for symbol in symbols if symbols is not None else self.settings.watch_symbols:
            try:
                await self.watch(symbol)
            except FetchError as e:
                # Keep the other symbols going; the caller can retry this one.
                log.error("Could not start symbol=%s error=%s", symbol, e)

    async def stop(self) -> None:
        for key in list(self.watchers):
            self.unwatch(key)
        self.registry.close()
        self.provider.close()
