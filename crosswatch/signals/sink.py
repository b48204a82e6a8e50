from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Tuple

from crosswatch.models.signal import SignalValidation

log = logging.getLogger("alert_sink")


class AlertSink(ABC):
    """
    Receiver of validated crossovers.

    Rendering, sounds and push delivery live behind this interface.
    """

    @abstractmethod
    def on_signal(self, validation: SignalValidation, symbol: str, price: float) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):
    """Writes each alert to the log."""

    def on_signal(self, validation: SignalValidation, symbol: str, price: float) -> None:
        log.info(
            "SIGNAL symbol=%s price=%s %s",
            symbol.upper(),
            price,
            validation.summary(),
        )


class MemoryAlertSink(AlertSink):
    """Keeps alerts in a list (dev tooling and tests)."""

    def __init__(self) -> None:
        self.alerts: List[Tuple[SignalValidation, str, float]] = []

    def on_signal(self, validation: SignalValidation, symbol: str, price: float) -> None:
        self.alerts.append((validation, symbol, price))
