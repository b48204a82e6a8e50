from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class Interval:
    """
    A selectable candle granularity.

    token: exchange interval token (e.g. "1h")
    millis: bar length in milliseconds
    fetch_limit: how many bars the historical fetch asks for
    """
    token: str
    millis: int
    fetch_limit: int


_MINUTE = 60_000

INTERVALS: Dict[str, Interval] = {
    "1m": Interval("1m", _MINUTE, 500),
    "5m": Interval("5m", 5 * _MINUTE, 288),
    "15m": Interval("15m", 15 * _MINUTE, 192),
    "1h": Interval("1h", 60 * _MINUTE, 168),
    "4h": Interval("4h", 240 * _MINUTE, 180),
    "1d": Interval("1d", 1440 * _MINUTE, 90),
}


def get_interval(token: str) -> Interval:
    try:
        return INTERVALS[token]
    except KeyError:
        raise ValueError(
            f"Unknown interval={token!r}. Expected one of: {', '.join(INTERVALS)}"
        ) from None


def align_open_time(event_time_ms: int, interval_ms: int) -> int:
    """Round an event time down to the open time of its bar."""
    return (event_time_ms // interval_ms) * interval_ms
