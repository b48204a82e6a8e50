import math
import random
import unittest

from crosswatch.indicators.engine import (
    HistogramState,
    IndicatorConfig,
    bollinger_series,
    compute_indicators,
    ema_series,
    histogram_states,
    macd_series,
    rsi_series,
    sma_series,
    stochastic_series,
)
from tests.fakes import make_candles


class TestMovingAverages(unittest.TestCase):
    def test_ema_example(self):
        self.assertEqual(ema_series([10, 20, 30, 40], 3), [10, 15, 22.5, 31.25])

    def test_ema_of_constant_series_is_constant(self):
        for n in (1, 2, 50):
            self.assertEqual(ema_series([7.25] * n, 12), [7.25] * n)

    def test_ema_empty(self):
        self.assertEqual(ema_series([], 9), [])

    def test_sma_warm_up(self):
        self.assertEqual(sma_series([1, 2, 3, 4, 5], 3), [None, None, 2.0, 3.0, 4.0])

    def test_sma_skips_windows_with_undefined_values(self):
        self.assertEqual(sma_series([None, 2, 4, 6], 2), [None, None, 3.0, 5.0])


class TestBollinger(unittest.TestCase):
    def test_uses_population_standard_deviation(self):
        bands = bollinger_series([1, 2, 3, 4, 5], period=5, std_dev=2)

        self.assertEqual(bands[:4], [None] * 4)
        point = bands[4]
        self.assertAlmostEqual(point.middle, 3.0)
        self.assertAlmostEqual(point.upper, 3.0 + 2 * math.sqrt(2))
        self.assertAlmostEqual(point.lower, 3.0 - 2 * math.sqrt(2))

    def test_flat_window_collapses_bands(self):
        point = bollinger_series([4.0] * 20)[-1]
        self.assertEqual((point.middle, point.upper, point.lower), (4.0, 4.0, 4.0))


class TestRsi(unittest.TestCase):
    def test_monotonic_rise_gives_100(self):
        prices = [100 + i for i in range(15)]
        rsi = rsi_series(prices, 14)

        self.assertEqual(rsi[:14], [None] * 14)
        self.assertEqual(rsi[14], 100.0)

    def test_wilder_smoothing_values(self):
        # gains [0,1,0,1], losses [0,0,1,0]
        rsi = rsi_series([1, 2, 1, 2], 2)
        self.assertEqual(rsi[:2], [None, None])
        self.assertAlmostEqual(rsi[2], 50.0)
        self.assertAlmostEqual(rsi[3], 75.0)

    def test_too_short_series_is_undefined(self):
        self.assertEqual(rsi_series([1, 2, 3], 14), [None, None, None])

    def test_bounded_between_0_and_100(self):
        rng = random.Random(3)
        prices = [100.0]
        for _ in range(400):
            prices.append(max(1.0, prices[-1] + rng.uniform(-3, 3)))

        for value in rsi_series(prices, 14)[14:]:
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 100.0)

    def test_below_100_once_any_loss_is_averaged_in(self):
        prices = [10, 9] + [10 + i for i in range(30)]
        rsi = rsi_series(prices, 5)
        for value in rsi[5:]:
            self.assertLess(value, 100.0)

    def test_all_losses_gives_0(self):
        rsi = rsi_series([20 - i for i in range(16)], 14)
        self.assertEqual(rsi[14], 0.0)


class TestMacd(unittest.TestCase):
    def test_lines_are_ema_differences(self):
        prices = [100 + math.sin(i / 3) * 5 for i in range(60)]
        result = macd_series(prices, 12, 26, 9)
        fast = ema_series(prices, 12)
        slow = ema_series(prices, 26)

        self.assertEqual(len(result.macd), 60)
        for i in range(60):
            self.assertEqual(result.macd[i], fast[i] - slow[i])
            self.assertEqual(result.histogram[i], result.macd[i] - result.signal[i])
        self.assertEqual(result.signal, ema_series(result.macd, 9))

    def test_constant_prices_give_flat_zero_lines(self):
        result = macd_series([3.0] * 40)
        self.assertEqual(set(result.macd), {0.0})
        self.assertEqual(set(result.signal), {0.0})
        self.assertEqual(set(result.histogram), {0.0})

    def test_histogram_states(self):
        states = histogram_states([0.0, 1.0, 0.5, -0.5, -1.0, -0.2])
        self.assertEqual(
            states,
            [
                HistogramState.NEUTRAL,
                HistogramState.ABOVE_RISING,
                HistogramState.ABOVE_FALLING,
                HistogramState.BELOW_FALLING,
                HistogramState.BELOW_FALLING,
                HistogramState.BELOW_RISING,
            ],
        )


class TestStochastic(unittest.TestCase):
    def test_raw_k(self):
        result = stochastic_series([10, 12, 14], [8, 9, 10], [9, 11, 13], k_period=3, d_period=1, smooth=1)
        self.assertEqual(result.raw_k[:2], [None, None])
        self.assertAlmostEqual(result.raw_k[2], (13 - 8) / 6 * 100)
        self.assertEqual(result.k, result.raw_k)

    def test_smoothing_and_d_alignment(self):
        highs = [float(10 + i) for i in range(10)]
        lows = [float(i) for i in range(10)]
        closes = [float(5 + i) for i in range(10)]
        result = stochastic_series(highs, lows, closes, k_period=3, d_period=3, smooth=3)

        self.assertEqual(result.raw_k[1], None)
        self.assertIsNotNone(result.raw_k[2])
        self.assertEqual(result.k[:4], [None] * 4)
        self.assertAlmostEqual(result.k[4], sum(result.raw_k[2:5]) / 3)
        self.assertEqual(result.d[:6], [None] * 6)
        self.assertAlmostEqual(result.d[6], sum(result.k[4:7]) / 3)

    def test_flat_window_without_history_is_zero(self):
        result = stochastic_series([5.0] * 5, [5.0] * 5, [5.0] * 5, k_period=3, d_period=1, smooth=1)
        self.assertEqual(result.raw_k, [None, None, 0.0, 0.0, 0.0])

    def test_flat_window_carries_previous_value_forward(self):
        highs = [2.0, 1.0, 1.0, 1.0]
        lows = [0.0, 1.0, 1.0, 1.0]
        closes = [1.0, 1.0, 1.0, 1.0]
        result = stochastic_series(highs, lows, closes, k_period=2, d_period=1, smooth=1)

        self.assertEqual(result.raw_k[1], 50.0)
        self.assertEqual(result.raw_k[2], 50.0)
        self.assertEqual(result.raw_k[3], 50.0)

    def test_bounded_between_0_and_100(self):
        rng = random.Random(11)
        candles = make_candles([100 + rng.uniform(-5, 5) for _ in range(200)])
        result = stochastic_series(
            [c.high for c in candles], [c.low for c in candles], [c.close for c in candles]
        )
        for value in result.raw_k + result.k + result.d:
            if value is not None:
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 100.0)


class TestComputeIndicators(unittest.TestCase):
    def test_series_are_aligned_with_candles(self):
        candles = make_candles([100 + i * 0.5 for i in range(250)])
        snap = compute_indicators(candles)

        self.assertEqual(snap.times, [c.open_time_ms for c in candles])
        for series in list(snap.ma.values()) + list(snap.ema.values()):
            self.assertEqual(len(series), 250)
        self.assertEqual(len(snap.bollinger), 250)
        self.assertEqual(len(snap.rsi), 250)
        self.assertEqual(len(snap.macd.histogram), 250)
        self.assertEqual(len(snap.stochastic.d), 250)
        self.assertEqual(len(snap.histogram_state), 250)

    def test_latest_values(self):
        candles = make_candles([100 + i for i in range(30)])
        latest = compute_indicators(candles, IndicatorConfig(ma_periods=(9, 50))).latest()

        self.assertAlmostEqual(latest["ma9"], sum(range(121, 130)) / 9)
        self.assertIsNone(latest["ma50"])
        self.assertEqual(latest["rsi"], 100.0)
        self.assertIn("macd_histogram", latest)
        self.assertIn("bb_upper", latest)

    def test_empty_series(self):
        self.assertEqual(compute_indicators([]).latest(), {})


if __name__ == "__main__":
    unittest.main()
