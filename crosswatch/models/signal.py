from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from pydantic import BaseModel


@dataclass(frozen=True)
class CrossEvent:
    """
    A MACD / signal-line crossover at one bar.

    macd_above_signal=True is a bullish cross, False a bearish one.
    """
    time_ms: int
    macd_value: float
    signal_value: float
    macd_above_signal: bool

    @property
    def key(self) -> Tuple[int, bool]:
        return (self.time_ms, self.macd_above_signal)

    @property
    def direction(self) -> str:
        return "bullish" if self.macd_above_signal else "bearish"


class CriterionResult(BaseModel):
    passed: bool
    label: str


class SignalValidation(BaseModel):
    """
    Outcome of validating one crossover.

    reasons:
      criterion name -> pass/fail with a short human-readable label,
      in the order the criteria were checked (volume, histogram, trend, consecutive)
    """

    is_valid: bool
    time_ms: int
    direction: str
    macd_value: float
    signal_value: float
    reasons: Dict[str, CriterionResult] = {}

    def summary(self) -> str:
        marks = ", ".join(
            f"{name}={'ok' if r.passed else 'fail'}" for name, r in self.reasons.items()
        )
        return f"{self.direction} cross at {self.time_ms} valid={self.is_valid} ({marks})"
