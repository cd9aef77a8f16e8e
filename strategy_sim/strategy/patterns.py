import logging
from typing import NamedTuple, Optional

import numpy as np
import pandas as pd

from strategy_sim.core.schema import Bar

logger = logging.getLogger("strategy_sim.strategy.patterns")

DOJI_BODY_RATIO = 0.1
WICK_BODY_RATIO = 2.0
OPPOSITE_WICK_RATIO = 0.5


class PatternMatch(NamedTuple):
    bullish: bool
    bearish: bool
    name: str


NO_PATTERN = PatternMatch(False, False, "")


class PatternRecognizer:
    """
    Detects candle patterns used by the volume cluster rules.
    Patterns:
    - Doji (Indecision, vetoes the other patterns on that bar)
    - Hammer (Bullish Reversal)
    - Shooting Star (Bearish Reversal)
    - Bullish Engulfing
    - Bearish Engulfing
    """

    @staticmethod
    def is_doji(bar: Bar) -> bool:
        rng = bar.range
        if rng == 0:
            return True
        return bar.body < DOJI_BODY_RATIO * rng

    @staticmethod
    def is_hammer(bar: Bar) -> bool:
        body = bar.body
        if body == 0:
            return False
        return bar.lower_wick > WICK_BODY_RATIO * body and bar.upper_wick < OPPOSITE_WICK_RATIO * body

    @staticmethod
    def is_shooting_star(bar: Bar) -> bool:
        body = bar.body
        if body == 0:
            return False
        return bar.upper_wick > WICK_BODY_RATIO * body and bar.lower_wick < OPPOSITE_WICK_RATIO * body

    @staticmethod
    def is_bullish_engulfing(prev: Bar, curr: Bar) -> bool:
        return prev.close < prev.open and curr.close > curr.open and curr.close > prev.open

    @staticmethod
    def is_bearish_engulfing(prev: Bar, curr: Bar) -> bool:
        return prev.close > prev.open and curr.close < curr.open and curr.close < prev.open

    @classmethod
    def check_patterns(cls, prev: Optional[Bar], curr: Bar) -> PatternMatch:
        """
        Classifies the current bar. Doji short-circuits every other pattern.
        Order: hammer, bullish engulfing, shooting star, bearish engulfing.
        """
        if cls.is_doji(curr):
            return PatternMatch(False, False, "Doji")
        if cls.is_hammer(curr):
            return PatternMatch(True, False, "Hammer")
        if prev is not None and cls.is_bullish_engulfing(prev, curr):
            return PatternMatch(True, False, "BullishEngulfing")
        if cls.is_shooting_star(curr):
            return PatternMatch(False, True, "ShootingStar")
        if prev is not None and cls.is_bearish_engulfing(prev, curr):
            return PatternMatch(False, True, "BearishEngulfing")
        return NO_PATTERN

    def detect_patterns(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Appends integer columns for charting: 'pat_doji', 'pat_hammer',
        'pat_shooting_star' and 'pat_engulfing' (+100 bullish, -100 bearish).
        """
        if df.empty:
            return df

        data = df.copy()
        op = data['Open']
        hi = data['High']
        lo = data['Low']
        cl = data['Close']

        body = (cl - op).abs()
        rng = hi - lo
        upper_wick = hi - np.maximum(cl, op)
        lower_wick = np.minimum(cl, op) - lo

        is_doji = (rng == 0) | (body < DOJI_BODY_RATIO * rng)
        data['pat_doji'] = np.where(is_doji, 100, 0)

        # Logic: Lower wick > 2 * body, Upper wick very small
        is_hammer = (body > 0) & (lower_wick > WICK_BODY_RATIO * body) & (upper_wick < body * OPPOSITE_WICK_RATIO)
        data['pat_hammer'] = np.where(is_hammer, 100, 0)

        is_star = (body > 0) & (upper_wick > WICK_BODY_RATIO * body) & (lower_wick < body * OPPOSITE_WICK_RATIO)
        data['pat_shooting_star'] = np.where(is_star, -100, 0)

        prev_op = op.shift(1)
        prev_cl = cl.shift(1)
        is_bull_eng = (cl > op) & (prev_cl < prev_op) & (cl > prev_op)
        is_bear_eng = (cl < op) & (prev_cl > prev_op) & (cl < prev_op)

        data['pat_engulfing'] = 0
        data.loc[is_bull_eng, 'pat_engulfing'] = 100
        data.loc[is_bear_eng, 'pat_engulfing'] = -100

        return data
