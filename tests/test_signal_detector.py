import random
import unittest

from crosswatch.indicators.engine import MacdSeries, compute_indicators
from crosswatch.signals.detector import (
    SignalConfig,
    SignalDetector,
    crossover_indices,
    find_crossovers,
)
from crosswatch.signals.sink import MemoryAlertSink
from tests.fakes import make_candles


def macd_with_cross(n, bullish=True, size=1.0):
    """MACD below (above) a zero signal line, crossing on the last bar."""
    before, after = (-size, size) if bullish else (size, -size)
    macd = [before] * (n - 1) + [after]
    signal = [0.0] * n
    return MacdSeries(macd, signal, [m - s for m, s in zip(macd, signal)])


def rising_candles(n=20, last_volume=100.0):
    volumes = [10.0] * (n - 1) + [last_volume]
    return make_candles([100.0 + i for i in range(n)], volumes=volumes)


def falling_candles(n=20, last_volume=100.0):
    volumes = [10.0] * (n - 1) + [last_volume]
    return make_candles([200.0 - i for i in range(n)], volumes=volumes)


class TestCrossoverDetection(unittest.TestCase):
    def test_flags_sign_changes(self):
        macd = [-1, -0.5, 0.5, 1, 0.2, -0.1]
        signal = [0, 0, 0, 0, 0.5, 0]
        self.assertEqual(crossover_indices(macd, signal), [2, 4])

        events = find_crossovers([10, 20, 30, 40, 50, 60], macd, signal)
        self.assertEqual([e.key for e in events], [(30, True), (50, False)])
        self.assertEqual(events[1].direction, "bearish")

    def test_crossovers_match_histogram_sign_flips(self):
        rng = random.Random(5)
        prices = [100.0]
        for _ in range(300):
            prices.append(max(1.0, prices[-1] + rng.uniform(-2, 2)))
        candles = make_candles(prices)
        macd = compute_indicators(candles).macd

        def sign(x):
            return (x > 0) - (x < 0)

        flips = [
            i for i in range(1, len(macd.histogram))
            if sign(macd.histogram[i]) != sign(macd.histogram[i - 1])
        ]
        events = find_crossovers([c.open_time_ms for c in candles], macd.macd, macd.signal)

        self.assertTrue(flips)
        self.assertEqual(crossover_indices(macd.macd, macd.signal), flips)
        keys = [e.key for e in events]
        self.assertEqual(len(keys), len(set(keys)))

    def test_touching_counts_as_above(self):
        events = find_crossovers([1, 2], [-1.0, 0.0], [0.0, 0.0])
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].macd_above_signal)

    def test_touch_then_cross_is_two_bullish_crossovers(self):
        # below -> touching -> above: each step changes sign
        events = find_crossovers([1, 2, 3], [-1.0, 0.0, 1.0], [0.0, 0.0, 0.0])
        self.assertEqual([e.key for e in events], [(2, True), (3, True)])


class TestSignalValidation(unittest.TestCase):
    def setUp(self):
        self.sink = MemoryAlertSink()
        self.detector = SignalDetector(sink=self.sink)

    def test_valid_bullish_cross_alerts_once(self):
        candles = rising_candles()
        macd = macd_with_cross(len(candles))

        validation = self.detector.process(candles, macd, "btc", 119.0)

        self.assertTrue(validation.is_valid)
        self.assertEqual(validation.direction, "bullish")
        self.assertEqual(validation.time_ms, candles[-1].open_time_ms)
        self.assertEqual(list(validation.reasons), ["volume", "histogram", "trend", "consecutive"])
        self.assertTrue(all(r.passed for r in validation.reasons.values()))
        self.assertEqual(len(self.sink.alerts), 1)
        self.assertEqual(self.sink.alerts[0][1:], ("btc", 119.0))

        # Recomputing the same series on the next tick re-derives the same cross.
        self.assertIsNone(self.detector.process(candles, macd, "btc", 119.5))
        self.assertEqual(len(self.sink.alerts), 1)
        self.assertEqual(self.detector.last_alerted_key, (candles[-1].open_time_ms, True))

    def test_valid_bearish_cross(self):
        candles = falling_candles()
        validation = self.detector.process(candles, macd_with_cross(20, bullish=False), "eth", 181.0)

        self.assertTrue(validation.is_valid)
        self.assertEqual(validation.direction, "bearish")
        self.assertEqual(len(self.sink.alerts), 1)

    def test_low_volume_cross_is_detected_but_not_alerted(self):
        candles = rising_candles(last_volume=15.0)
        macd = macd_with_cross(len(candles))

        self.assertIsNotNone(self.detector.latest_crossover(candles, macd))
        validation = self.detector.process(candles, macd, "btc", 119.0)

        self.assertFalse(validation.is_valid)
        self.assertFalse(validation.reasons["volume"].passed)
        self.assertTrue(validation.reasons["trend"].passed)
        self.assertEqual(self.sink.alerts, [])
        self.assertIsNone(self.detector.last_alerted_key)

    def test_rejected_cross_can_alert_once_volume_builds(self):
        candles = rising_candles(last_volume=15.0)
        macd = macd_with_cross(len(candles))
        self.assertFalse(self.detector.process(candles, macd, "btc", 119.0).is_valid)

        candles[-1].volume = 200.0
        self.assertTrue(self.detector.process(candles, macd, "btc", 119.0).is_valid)
        self.assertEqual(len(self.sink.alerts), 1)

    def test_tiny_histogram_move_fails(self):
        candles = rising_candles()
        validation = self.detector.process(candles, macd_with_cross(20, size=1e-9), "btc", 1.0)

        self.assertFalse(validation.is_valid)
        self.assertFalse(validation.reasons["histogram"].passed)

    def test_trend_needs_strict_monotonic_run(self):
        candles = rising_candles()
        candles[10].close = candles[9].close  # one flat step inside the window
        validation = self.detector.process(candles, macd_with_cross(20), "btc", 1.0)

        self.assertFalse(validation.is_valid)
        self.assertFalse(validation.reasons["trend"].passed)
        self.assertTrue(validation.reasons["consecutive"].passed)

    def test_consecutive_bars_against_direction(self):
        detector = SignalDetector(sink=self.sink, config=SignalConfig(trend_period=3, consecutive_bars=3))
        candles = falling_candles()
        validation = detector.process(candles, macd_with_cross(20, bullish=True), "btc", 1.0)

        self.assertFalse(validation.reasons["consecutive"].passed)
        self.assertFalse(validation.reasons["trend"].passed)
        self.assertEqual(self.sink.alerts, [])

    def test_not_enough_bars(self):
        candles = rising_candles(n=5)
        validation = self.detector.process(candles, macd_with_cross(5), "btc", 1.0)

        self.assertFalse(validation.is_valid)
        self.assertFalse(validation.reasons["volume"].passed)
        self.assertIn("need 14", validation.reasons["trend"].label)

    def test_only_latest_crossover_is_evaluated(self):
        candles = rising_candles()
        macd = [-1.0] * 5 + [1.0] * 5 + [-1.0] * 9 + [1.0]
        series = MacdSeries(macd, [0.0] * 20, macd)

        validation = self.detector.process(candles, series, "btc", 1.0)
        self.assertEqual(validation.time_ms, candles[19].open_time_ms)

    def test_no_crossover(self):
        candles = rising_candles()
        flat = MacdSeries([1.0] * 20, [0.0] * 20, [1.0] * 20)
        self.assertIsNone(self.detector.process(candles, flat, "btc", 1.0))
        self.assertIsNone(self.detector.evaluate(candles, flat))

    def test_length_mismatch_is_rejected(self):
        with self.assertRaises(ValueError):
            self.detector.process(rising_candles(), macd_with_cross(19), "btc", 1.0)

    def test_touch_and_cross_alert_separately(self):
        candles = make_candles([100.0 + i for i in range(20)], volumes=[2.0 ** i for i in range(20)])
        macd = [-1.0] * 18 + [0.0, 1.0]
        signal = [0.0] * 20

        touch = self.detector.process(candles[:19], MacdSeries(macd[:19], signal[:19], macd[:19]), "btc", 1.0)
        cross = self.detector.process(candles, MacdSeries(macd, signal, macd), "btc", 1.0)

        self.assertTrue(touch.is_valid)
        self.assertTrue(cross.is_valid)
        self.assertEqual(touch.direction, cross.direction)
        self.assertNotEqual(touch.time_ms, cross.time_ms)
        self.assertEqual(len(self.sink.alerts), 2)

    def test_evaluate_does_not_alert(self):
        validation = self.detector.evaluate(rising_candles(), macd_with_cross(20))
        self.assertTrue(validation.is_valid)
        self.assertEqual(self.sink.alerts, [])


if __name__ == "__main__":
    unittest.main()
