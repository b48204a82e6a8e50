from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from crosswatch.models.market import Candle


class MarketDataProvider(ABC):
    """
    Provider contract (interface).

    Any provider must implement:
    - fetch_candles(): historical candles via REST, oldest first
    - fetch_current_price(): a precise current price for the symbol

    Both raise FetchError on failure and never retry on their own.
    """

    @abstractmethod
    def fetch_candles(self, symbol: str, interval: str) -> List[Candle]:
        raise NotImplementedError

    @abstractmethod
    def fetch_current_price(self, symbol: str) -> float:
        raise NotImplementedError

    def close(self) -> None:
        pass
