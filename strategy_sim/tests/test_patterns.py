import unittest
from datetime import datetime

import pandas as pd

from strategy_sim.core.schema import Bar
from strategy_sim.strategy.patterns import PatternRecognizer, NO_PATTERN


def bar(o, h, l, c):
    return Bar(datetime(2024, 1, 1), o, h, l, c, 1000.0)


class TestPatternRecognizer(unittest.TestCase):

    def test_zero_body_is_doji_regardless_of_wicks(self):
        for candle in (bar(100, 101, 99, 100), bar(100, 110, 99.9, 100), bar(100, 100.1, 90, 100)):
            self.assertTrue(PatternRecognizer.is_doji(candle))
            self.assertEqual(PatternRecognizer.check_patterns(None, candle).name, "Doji")

    def test_zero_range_is_doji(self):
        self.assertTrue(PatternRecognizer.is_doji(bar(100, 100, 100, 100)))

    def test_small_body_relative_to_range(self):
        self.assertTrue(PatternRecognizer.is_doji(bar(100, 102, 98, 100.3)))
        self.assertFalse(PatternRecognizer.is_doji(bar(100, 102, 98, 100.5)))

    def test_hammer(self):
        hammer = bar(100.0, 100.25, 99.5, 100.2)
        self.assertTrue(PatternRecognizer.is_hammer(hammer))
        self.assertFalse(PatternRecognizer.is_shooting_star(hammer))
        match = PatternRecognizer.check_patterns(None, hammer)
        self.assertTrue(match.bullish)
        self.assertEqual(match.name, "Hammer")

    def test_hammer_needs_a_body(self):
        self.assertFalse(PatternRecognizer.is_hammer(bar(100, 100, 98, 100)))

    def test_shooting_star(self):
        star = bar(100.2, 100.7, 99.95, 100.0)
        self.assertTrue(PatternRecognizer.is_shooting_star(star))
        match = PatternRecognizer.check_patterns(None, star)
        self.assertTrue(match.bearish)
        self.assertEqual(match.name, "ShootingStar")

    def test_engulfing(self):
        prev_bear = bar(101, 101.2, 99.8, 100)
        curr_bull = bar(100, 102.2, 99.9, 102)
        self.assertTrue(PatternRecognizer.is_bullish_engulfing(prev_bear, curr_bull))
        self.assertEqual(PatternRecognizer.check_patterns(prev_bear, curr_bull).name, "BullishEngulfing")

        prev_bull = bar(100, 101.2, 99.8, 101)
        curr_bear = bar(101, 101.1, 98.8, 99)
        self.assertTrue(PatternRecognizer.is_bearish_engulfing(prev_bull, curr_bear))
        self.assertEqual(PatternRecognizer.check_patterns(prev_bull, curr_bear).name, "BearishEngulfing")

    def test_no_pattern(self):
        plain = bar(100, 101.1, 99.9, 101)
        self.assertEqual(PatternRecognizer.check_patterns(bar(99, 100.1, 98.9, 100), plain), NO_PATTERN)

    def test_doji_short_circuits_engulfing(self):
        prev_bear = bar(101, 101.2, 99.8, 100)
        doji = bar(100, 103, 97, 100)
        match = PatternRecognizer.check_patterns(prev_bear, doji)
        self.assertFalse(match.bullish or match.bearish)

    def test_detect_patterns_columns(self):
        df = pd.DataFrame({
            "Open": [101.0, 100.0, 100.0],
            "High": [101.2, 102.2, 103.0],
            "Low": [99.8, 99.9, 97.0],
            "Close": [100.0, 102.0, 100.0],
        })
        out = PatternRecognizer().detect_patterns(df)
        self.assertEqual(list(out["pat_doji"]), [0, 0, 100])
        self.assertEqual(list(out["pat_engulfing"]), [0, 100, 0])
        self.assertNotIn("pat_doji", df.columns)


if __name__ == '__main__':
    unittest.main()
