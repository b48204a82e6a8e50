from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from crosswatch.models.market import Candle

Series = List[Optional[float]]

# Every function below returns a list aligned index-for-index with its input;
# None marks indices where the indicator is not yet defined.


# -------------------------
# MA
# -------------------------
def sma_series(values: Sequence[Optional[float]], period: int) -> Series:
    """
    Simple mean of the trailing `period` values.
    Undefined until `period` defined values are available.
    """
    n = len(values)
    out: Series = [None] * n
    for i in range(period - 1, n):
        window = values[i - period + 1 : i + 1]
        if any(v is None for v in window):
            continue
        out[i] = sum(window) / period
    return out


# -------------------------
# EMA
# -------------------------
def ema_series(values: List[float], period: int) -> List[float]:
    """Seeded with the first value, so it is defined at every index."""
    if not values:
        return []
    k = 2.0 / (period + 1)
    out = [values[0]]
    for v in values[1:]:
        out.append((v - out[-1]) * k + out[-1])
    return out


# -------------------------
# Bollinger Bands
# -------------------------
class BollingerPoint(NamedTuple):
    middle: float
    upper: float
    lower: float


def bollinger_series(
    values: List[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> List[Optional[BollingerPoint]]:
    """Middle = SMA(period); bands at +/- std_dev population standard deviations."""
    n = len(values)
    out: List[Optional[BollingerPoint]] = [None] * n
    for i in range(period - 1, n):
        window = values[i - period + 1 : i + 1]
        middle = sum(window) / period
        variance = sum((v - middle) ** 2 for v in window) / period
        std = math.sqrt(variance)
        out[i] = BollingerPoint(middle, middle + std_dev * std, middle - std_dev * std)
    return out


# -------------------------
# RSI (Wilder smoothing)
# -------------------------
def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi_series(values: List[float], period: int = 14) -> Series:
    """
    gain/loss per bar from close-to-close diffs (0 at index 0).
    First average at index `period` is the plain mean of bars 1..period;
    after that: avg = (avg * (period - 1) + current) / period.
    """
    n = len(values)
    out: Series = [None] * n
    if n <= period:
        return out

    gains = [0.0]
    losses = [0.0]
    for i in range(1, n):
        diff = values[i] - values[i - 1]
        gains.append(max(diff, 0.0))
        losses.append(max(-diff, 0.0))

    avg_gain = sum(gains[1 : period + 1]) / period
    avg_loss = sum(losses[1 : period + 1]) / period
    out[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, n):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i] = _rsi_value(avg_gain, avg_loss)

    return out


# -------------------------
# MACD
# -------------------------
class MacdSeries(NamedTuple):
    macd: List[float]
    signal: List[float]
    histogram: List[float]


def macd_series(
    values: List[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdSeries:
    fast_ema = ema_series(values, fast)
    slow_ema = ema_series(values, slow)
    macd_line = [f - s for f, s in zip(fast_ema, slow_ema)]
    signal_line = ema_series(macd_line, signal)
    histogram = [m - s for m, s in zip(macd_line, signal_line)]
    return MacdSeries(macd_line, signal_line, histogram)


class HistogramState(str, Enum):
    ABOVE_RISING = "above_rising"
    ABOVE_FALLING = "above_falling"
    BELOW_FALLING = "below_falling"
    BELOW_RISING = "below_rising"
    NEUTRAL = "neutral"


def histogram_states(histogram: List[float]) -> List[HistogramState]:
    """Classify each histogram bar by side of zero and direction vs the previous bar."""
    out: List[HistogramState] = []
    for i, h in enumerate(histogram):
        if i == 0:
            out.append(HistogramState.NEUTRAL)
            continue
        prev = histogram[i - 1]
        if h >= 0:
            out.append(HistogramState.ABOVE_RISING if h > prev else HistogramState.ABOVE_FALLING)
        else:
            out.append(HistogramState.BELOW_FALLING if h < prev else HistogramState.BELOW_RISING)
    return out


# -------------------------
# Stochastic
# -------------------------
class StochasticSeries(NamedTuple):
    raw_k: Series
    k: Series
    d: Series


def stochastic_series(
    highs: List[float],
    lows: List[float],
    closes: List[float],
    k_period: int = 14,
    d_period: int = 3,
    smooth: int = 3,
) -> StochasticSeries:
    """
    raw %K = (close - lowest low) / (highest high - lowest low) * 100 over k_period bars
    %K     = SMA(smooth) of raw %K
    %D     = SMA(d_period) of %K

    Flat window (highest high == lowest low): raw %K carries forward the
    previous raw %K, or 0.0 when there is no previous value.
    """
    n = len(closes)
    raw: Series = [None] * n
    prev: Optional[float] = None
    for i in range(k_period - 1, n):
        highest = max(highs[i - k_period + 1 : i + 1])
        lowest = min(lows[i - k_period + 1 : i + 1])
        span = highest - lowest
        if span == 0:
            value = prev if prev is not None else 0.0
        else:
            value = (closes[i] - lowest) / span * 100.0
        raw[i] = value
        prev = value

    k = sma_series(raw, smooth)
    d = sma_series(k, d_period)
    return StochasticSeries(raw, k, d)


# -------------------------
# Full indicator set for a candle series
# -------------------------
@dataclass(frozen=True)
class IndicatorConfig:
    ma_periods: Tuple[int, ...] = (9, 20, 50, 200)
    ema_periods: Tuple[int, ...] = (9, 20, 50, 200)
    bb_period: int = 20
    bb_std_dev: float = 2.0
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    stoch_k: int = 14
    stoch_d: int = 3
    stoch_smooth: int = 3


@dataclass
class IndicatorSnapshot:
    """All indicator series for one candle snapshot, aligned with `times`."""
    times: List[int]
    ma: Dict[int, Series] = field(default_factory=dict)
    ema: Dict[int, List[float]] = field(default_factory=dict)
    bollinger: List[Optional[BollingerPoint]] = field(default_factory=list)
    rsi: Series = field(default_factory=list)
    macd: MacdSeries = field(default_factory=lambda: MacdSeries([], [], []))
    histogram_state: List[HistogramState] = field(default_factory=list)
    stochastic: StochasticSeries = field(default_factory=lambda: StochasticSeries([], [], []))

    def latest(self) -> Dict[str, Optional[float]]:
        """Last value of each series, keyed like ma20 / ema9 / bb_upper / rsi14."""
        if not self.times:
            return {}

        out: Dict[str, Optional[float]] = {}
        for p, s in self.ma.items():
            out[f"ma{p}"] = s[-1]
        for p, s in self.ema.items():
            out[f"ema{p}"] = s[-1]

        bb = self.bollinger[-1]
        out["bb_middle"] = bb.middle if bb else None
        out["bb_upper"] = bb.upper if bb else None
        out["bb_lower"] = bb.lower if bb else None

        out["rsi"] = self.rsi[-1]
        out["macd"] = self.macd.macd[-1]
        out["macd_signal"] = self.macd.signal[-1]
        out["macd_histogram"] = self.macd.histogram[-1]
        out["stoch_k"] = self.stochastic.k[-1]
        out["stoch_d"] = self.stochastic.d[-1]
        return out


def compute_indicators(
    candles: List[Candle],
    config: Optional[IndicatorConfig] = None,
) -> IndicatorSnapshot:
    cfg = config or IndicatorConfig()
    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]

    macd = macd_series(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    return IndicatorSnapshot(
        times=[c.open_time_ms for c in candles],
        ma={p: sma_series(closes, p) for p in cfg.ma_periods},
        ema={p: ema_series(closes, p) for p in cfg.ema_periods},
        bollinger=bollinger_series(closes, cfg.bb_period, cfg.bb_std_dev),
        rsi=rsi_series(closes, cfg.rsi_period),
        macd=macd,
        histogram_state=histogram_states(macd.histogram),
        stochastic=stochastic_series(
            highs, lows, closes, cfg.stoch_k, cfg.stoch_d, cfg.stoch_smooth
        ),
    )
