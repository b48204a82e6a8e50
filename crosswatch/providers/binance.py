from __future__ import annotations

import logging
import math
from typing import Any, List, Optional

import httpx

from crosswatch.candles.intervals import get_interval
from crosswatch.errors import FetchError
from crosswatch.models.market import Candle
from crosswatch.providers.base import MarketDataProvider

log = logging.getLogger("binance_provider")


class BinanceProvider(MarketDataProvider):
    """
    Binance public REST (no auth).

    - klines for the candle history of a <SYMBOL><QUOTE> pair
    - bookTicker mid price for the provisional last close
    """

    def __init__(
        self,
        base_url: str = "https://api.binance.com/api/v3",
        quote_asset: str = "usdt",
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.quote_asset = quote_asset.upper()
        self._client = client or httpx.Client(
            timeout=timeout_s,
            headers={"Accept": "application/json"},
        )

    def pair(self, symbol: str) -> str:
        return f"{symbol.upper()}{self.quote_asset}"

    def _get(self, path: str, params: dict) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            resp = self._client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise FetchError(f"GET {path} failed params={params}: {e}") from e
        except ValueError as e:
            raise FetchError(f"GET {path} returned invalid JSON: {e}") from e

    # -------------------------
    # Public interface used by the app
    # -------------------------
    def fetch_candles(self, symbol: str, interval: str) -> List[Candle]:
        """
        Returns candles oldest first.

        interval is one of 1m/5m/15m/1h/4h/1d; each has a fixed bar limit.
        Rows with non-numeric values or broken OHLC ordering are skipped.
        """
        spec = get_interval(interval)
        data = self._get(
            "klines",
            {"symbol": self.pair(symbol), "interval": spec.token, "limit": spec.fetch_limit},
        )
        if not isinstance(data, list):
            raise FetchError(f"Unexpected klines payload type symbol={symbol} type={type(data)}")

        out: List[Candle] = []
        for row in data:
            candle = self._parse_kline(row)
            if candle is None:
                continue
            out.append(candle)

        out.sort(key=lambda c: c.open_time_ms)
        skipped = len(data) - len(out)
        if skipped:
            log.warning("Skipped %d invalid kline rows symbol=%s interval=%s", skipped, symbol, interval)
        return out

    def fetch_current_price(self, symbol: str) -> float:
        """Mid of best bid/ask; falls back to the last trade price."""
        pair = self.pair(symbol)
        data = self._get("ticker/bookTicker", {"symbol": pair})
        try:
            bid = float(data["bidPrice"])
            ask = float(data["askPrice"])
        except (KeyError, TypeError, ValueError):
            bid = ask = 0.0

        if bid > 0 and ask > 0:
            return (bid + ask) / 2

        data = self._get("ticker/price", {"symbol": pair})
        try:
            price = float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"No usable price for {pair}: {data!r}") from e
        if not math.isfinite(price) or price <= 0:
            raise FetchError(f"No usable price for {pair}: {price!r}")
        return price

    # -------------------------
    # Row parsing
    # -------------------------
    def _parse_kline(self, row: Any) -> Optional[Candle]:
        # [openTime, open, high, low, close, volume, closeTime, ...]
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            return None
        try:
            values = [float(x) for x in row[1:6]]
            open_time = int(row[0])
        except (TypeError, ValueError):
            return None
        if not all(math.isfinite(v) for v in values):
            return None

        o, h, l, c, v = values
        candle = Candle(open_time_ms=open_time, open=o, high=h, low=l, close=c, volume=v)
        if not candle.is_consistent():
            return None
        return candle

    def close(self) -> None:
        self._client.close()
