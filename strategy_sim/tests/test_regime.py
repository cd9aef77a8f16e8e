import unittest

import numpy as np

from strategy_sim.core.schema import MarketState
from strategy_sim.core.series import BarSeries
from strategy_sim.strategy.indicators import average_true_range, bollinger_bandwidth
from strategy_sim.strategy.regime import classify_regime, detect_regime

from conftest import make_frame


def _breakout(direction: int, n: int = 70) -> BarSeries:
    i = np.arange(n)
    calm = 100.0 + 0.1 * (-1.0) ** i
    trend = 100.0 + direction * 2.0 * (i - 49)
    closes = np.where(i < 50, calm, trend)
    spread = np.where(i < 50, 0.1, 0.1 + 0.3 * (i - 49))
    return BarSeries(make_frame(closes, spread=spread))


class TestRegimeClassifier(unittest.TestCase):

    def statuses(self, series, start, stop, **kwargs):
        return [detect_regime(series.window(0, i + 1), **kwargs).status for i in range(start, stop)]

    def test_insufficient_data_below_two_periods(self):
        series = BarSeries(make_frame(100 + np.arange(39, dtype=float)))
        self.assertEqual(detect_regime(series, period=20).status, MarketState.INSUFFICIENT_DATA)

    def test_squeeze_when_bandwidth_contracts(self):
        i = np.arange(80)
        closes = np.where(i < 50, 100 + 5.0 * (-1.0) ** i, 100 + 0.2 * (-1.0) ** i)
        series = BarSeries(make_frame(closes, spread=0.3))
        self.assertIn(MarketState.SQUEEZE, self.statuses(series, 55, 70))

    def test_expanding_bullish_breakout(self):
        series = _breakout(+1)
        statuses = self.statuses(series, 52, 62)
        self.assertIn(MarketState.EXPANDING_BULLISH, statuses)
        self.assertNotIn(MarketState.EXPANDING_BEARISH, statuses)

    def test_expanding_bearish_breakdown(self):
        series = _breakout(-1)
        statuses = self.statuses(series, 52, 62)
        self.assertIn(MarketState.EXPANDING_BEARISH, statuses)
        self.assertNotIn(MarketState.EXPANDING_BULLISH, statuses)

    def test_threshold_forces_neutral(self):
        rng = np.random.default_rng(1)
        series = BarSeries(make_frame(100 + np.cumsum(rng.normal(size=80))))
        for status in self.statuses(series, 40, 80, threshold=100.0):
            self.assertEqual(status, MarketState.NEUTRAL)

    def test_insufficient_atr(self):
        close = 100 + np.sin(np.arange(50))
        bbw, _, middle, _ = bollinger_bandwidth(close, 20, 2.0)
        atr = np.full(50, np.nan)
        state = classify_regime(close, middle, bbw, atr, end=45, period=20)
        self.assertEqual(state.status, MarketState.INSUFFICIENT_ATR)

    def test_insufficient_bandwidth_series(self):
        close = 100 + np.sin(np.arange(50))
        _, _, middle, _ = bollinger_bandwidth(close, 20, 2.0)
        bbw = np.full(50, np.nan)
        atr = np.linspace(1.0, 2.0, 50)
        state = classify_regime(close, middle, bbw, atr, end=45, period=20)
        self.assertEqual(state.status, MarketState.INSUFFICIENT_BBW_SERIES)
        self.assertTrue(state.status.is_insufficient)

    def test_precomputed_arrays_match_window_recomputation(self):
        rng = np.random.default_rng(8)
        series = BarSeries(make_frame(100 + np.cumsum(rng.normal(size=120)), spread=0.4))
        bbw, _, middle, _ = bollinger_bandwidth(series.closes, 20, 2.0)
        atr = average_true_range(series.highs, series.lows, series.closes)

        for i in range(0, 120, 7):
            fast = classify_regime(series.closes, middle, bbw, atr, end=i, period=20)
            slow = detect_regime(series.window(0, i + 1), period=20)
            self.assertEqual(fast.status, slow.status, f"index {i}")
            np.testing.assert_allclose(fast.bbw_avg, slow.bbw_avg, equal_nan=True)
            self.assertEqual(fast.bbw_trend_up, slow.bbw_trend_up)


if __name__ == '__main__':
    unittest.main()
