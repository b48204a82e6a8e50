from __future__ import annotations

import json
import math
from typing import Any, Optional

from crosswatch.errors import DataInvariantError, MessageParseError
from crosswatch.models.market import Tick

TICKER_EVENT = "24hrTicker"


def _number(data: dict, field: str, required: bool = True) -> Optional[float]:
    raw = data.get(field)
    if raw is None:
        if required:
            raise DataInvariantError(f"missing field {field!r}")
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise DataInvariantError(f"field {field!r} is not numeric: {raw!r}") from None
    if not math.isfinite(value):
        raise DataInvariantError(f"field {field!r} is not finite: {raw!r}")
    return value


class TickerParser:
    """
    Decodes `<symbol>@ticker` frames into Tick objects for one symbol.

    The ticker stream reports rolling 24h volume ("v"), so the volume of a
    tick is the growth of that total since the previous frame. The first
    frame, and any frame where the rolling total shrinks, counts as 0.
    """

    def __init__(self, symbol: str):
        self.symbol = symbol
        self._last_total_volume: Optional[float] = None

    def reset(self) -> None:
        """Forget the volume baseline (called after a reconnect)."""
        self._last_total_volume = None

    def parse(self, raw: Any) -> Optional[Tick]:
        """
        Returns a Tick, or None for frames that are not ticker events
        (e.g. the {"result": null, "id": ...} subscription ack).

        Raises MessageParseError for undecodable frames and
        DataInvariantError for ticker frames with unusable values.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MessageParseError(f"invalid JSON frame: {e}", raw=raw) from None

        if not isinstance(data, dict):
            raise MessageParseError("frame is not a JSON object", raw=raw)

        if data.get("e") != TICKER_EVENT:
            return None

        price = _number(data, "c")
        if price <= 0:
            raise DataInvariantError(f"non-positive price {price!r}")

        total_volume = _number(data, "v")
        event_time = _number(data, "E")
        price_change = _number(data, "p", required=False)
        price_change_percent = _number(data, "P", required=False)

        if self._last_total_volume is None or total_volume < self._last_total_volume:
            volume = 0.0
        else:
            volume = total_volume - self._last_total_volume
        self._last_total_volume = total_volume

        return Tick(
            symbol=self.symbol,
            price=price,
            volume=volume,
            event_time_ms=int(event_time),
            price_change=price_change,
            price_change_percent=price_change_percent,
        )


def channel_name(symbol: str, quote_asset: str = "usdt") -> str:
    return f"{symbol.lower()}{quote_asset.lower()}@ticker"


def control_message(method: str, channel: str, request_id: int) -> str:
    return json.dumps({"method": method, "params": [channel], "id": request_id})
