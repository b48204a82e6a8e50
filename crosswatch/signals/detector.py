from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from crosswatch.indicators.engine import MacdSeries
from crosswatch.models.market import Candle
from crosswatch.models.signal import CriterionResult, CrossEvent, SignalValidation
from crosswatch.signals.sink import AlertSink

log = logging.getLogger("signal_detector")


@dataclass(frozen=True)
class SignalConfig:
    volume_threshold_multiplier: float = 1.5
    trend_period: int = 14
    min_histogram_diff: float = 1e-6
    consecutive_bars: int = 3


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def crossover_indices(macd: Sequence[float], signal: Sequence[float]) -> List[int]:
    """
    Indices i > 0 where sign(macd - signal) differs from the previous bar.

    Sign 0 (lines touching) is its own state, so a pass below -> touching ->
    above yields two bullish crossovers on consecutive bars. Each has its own
    (time, direction) key and can alert separately.
    """
    out: List[int] = []
    for i in range(1, min(len(macd), len(signal))):
        if _sign(macd[i] - signal[i]) != _sign(macd[i - 1] - signal[i - 1]):
            out.append(i)
    return out


def cross_event_at(times: Sequence[int], macd: Sequence[float], signal: Sequence[float], i: int) -> CrossEvent:
    return CrossEvent(
        time_ms=times[i],
        macd_value=macd[i],
        signal_value=signal[i],
        macd_above_signal=macd[i] >= signal[i],
    )


def find_crossovers(times: Sequence[int], macd: Sequence[float], signal: Sequence[float]) -> List[CrossEvent]:
    return [cross_event_at(times, macd, signal, i) for i in crossover_indices(macd, signal)]


def _strictly_moving(values: Sequence[float], up: bool) -> bool:
    if up:
        return all(b > a for a, b in zip(values, values[1:]))
    return all(b < a for a, b in zip(values, values[1:]))


class SignalDetector:
    """
    Finds the latest MACD / signal crossover and validates it.

    Criteria (all must pass):
      volume       bar volume > average volume over trend_period bars * multiplier
      histogram    |hist[i] - hist[i-1]| > min_histogram_diff
      trend        every close-to-close step over trend_period closes goes the cross's way
      consecutive  the last consecutive_bars closes step strictly the cross's way

    Only the most recent crossover is looked at. Once a crossover has been
    alerted its (time, direction) key is remembered, so recomputing the same
    series on later ticks does not alert it again.
    """

    def __init__(self, sink: Optional[AlertSink] = None, config: Optional[SignalConfig] = None):
        self.sink = sink
        self.config = config or SignalConfig()
        self.last_alerted_key: Optional[Tuple[int, bool]] = None
        self.last_validation: Optional[SignalValidation] = None

    def latest_crossover(self, candles: List[Candle], macd: MacdSeries) -> Optional[Tuple[int, CrossEvent]]:
        if len(macd.macd) != len(candles) or len(macd.signal) != len(candles):
            raise ValueError(
                f"MACD series length {len(macd.macd)} does not match {len(candles)} candles"
            )
        indices = crossover_indices(macd.macd, macd.signal)
        if not indices:
            return None
        i = indices[-1]
        times = [c.open_time_ms for c in candles]
        return i, cross_event_at(times, macd.macd, macd.signal, i)

    # -------------------------
    # Criteria
    # -------------------------
    def _check_volume(self, candles: List[Candle], i: int) -> CriterionResult:
        period = self.config.trend_period
        if i + 1 < period:
            return CriterionResult(passed=False, label=f"volume: need {period} bars, have {i + 1}")

        window = candles[i - period + 1 : i + 1]
        avg = sum(c.volume for c in window) / period
        threshold = avg * self.config.volume_threshold_multiplier
        volume = candles[i].volume
        passed = volume > threshold
        op = ">" if passed else "<="
        return CriterionResult(
            passed=passed,
            label=(
                f"volume {volume:.6g} {op} {threshold:.6g} "
                f"(avg{period} {avg:.6g} x {self.config.volume_threshold_multiplier})"
            ),
        )

    def _check_histogram(self, histogram: List[float], i: int) -> CriterionResult:
        diff = abs(histogram[i] - histogram[i - 1])
        passed = diff > self.config.min_histogram_diff
        op = ">" if passed else "<="
        return CriterionResult(
            passed=passed,
            label=f"histogram move {diff:.6g} {op} {self.config.min_histogram_diff:g}",
        )

    def _check_trend(self, closes: List[float], i: int, bullish: bool) -> CriterionResult:
        period = self.config.trend_period
        word = "rising" if bullish else "falling"
        if i + 1 < period:
            return CriterionResult(passed=False, label=f"trend: need {period} closes, have {i + 1}")
        passed = _strictly_moving(closes[i - period + 1 : i + 1], up=bullish)
        return CriterionResult(
            passed=passed,
            label=f"last {period} closes {'' if passed else 'not '}strictly {word}",
        )

    def _check_consecutive(self, closes: List[float], i: int, bullish: bool) -> CriterionResult:
        bars = self.config.consecutive_bars
        word = "up" if bullish else "down"
        if i + 1 < bars:
            return CriterionResult(passed=False, label=f"consecutive: need {bars} closes, have {i + 1}")
        passed = _strictly_moving(closes[i - bars + 1 : i + 1], up=bullish)
        return CriterionResult(
            passed=passed,
            label=f"last {bars} closes {'' if passed else 'not '}stepping {word}",
        )

    def validate(self, candles: List[Candle], macd: MacdSeries, i: int, event: CrossEvent) -> SignalValidation:
        closes = [c.close for c in candles]
        bullish = event.macd_above_signal

        reasons = {
            "volume": self._check_volume(candles, i),
            "histogram": self._check_histogram(macd.histogram, i),
            "trend": self._check_trend(closes, i, bullish),
            "consecutive": self._check_consecutive(closes, i, bullish),
        }
        return SignalValidation(
            is_valid=all(r.passed for r in reasons.values()),
            time_ms=event.time_ms,
            direction=event.direction,
            macd_value=event.macd_value,
            signal_value=event.signal_value,
            reasons=reasons,
        )

    def evaluate(self, candles: List[Candle], macd: MacdSeries) -> Optional[SignalValidation]:
        """Validate the latest crossover without alerting."""
        found = self.latest_crossover(candles, macd)
        if found is None:
            return None
        i, event = found
        return self.validate(candles, macd, i, event)

    def process(
        self,
        candles: List[Candle],
        macd: MacdSeries,
        symbol: str,
        price: float,
    ) -> Optional[SignalValidation]:
        """
        One recomputation cycle.

        Returns the validation of the latest crossover (valid or not), or
        None when there is no crossover or it was already alerted. A valid
        crossover is passed to the sink exactly once.
        """
        found = self.latest_crossover(candles, macd)
        if found is None:
            return None

        i, event = found
        if event.key == self.last_alerted_key:
            return None

        validation = self.validate(candles, macd, i, event)
        self.last_validation = validation

        if not validation.is_valid:
            log.debug("Crossover rejected symbol=%s %s", symbol, validation.summary())
            return validation

        if self.sink is not None:
            self.sink.on_signal(validation, symbol, price)
        self.last_alerted_key = event.key
        return validation
