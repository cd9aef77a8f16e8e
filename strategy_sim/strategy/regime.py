"""
Band-width regime classifier.

Combines the short-term trend of the band-width itself, the co-trend of price
and the band centre line, and the expansion of the 14-bar true range.
"""

import logging

import numpy as np

from strategy_sim.config import ATR_PERIOD
from strategy_sim.core.schema import MarketState, RegimeState
from strategy_sim.core.series import BarSeries
from strategy_sim.strategy.indicators import (
    average_true_range,
    bollinger_bandwidth,
    ema,
    normalize_bandwidth,
)

logger = logging.getLogger("strategy_sim.strategy.regime")

BBW_SMOOTHING = 5


def _last_defined(values: np.ndarray, count: int):
    """Last `count` values if all of them are defined, else None."""
    if len(values) < count:
        return None
    tail = values[-count:]
    if np.isnan(tail).any():
        return None
    return tail


def classify_regime(close: np.ndarray, middle: np.ndarray, bbw: np.ndarray, atr: np.ndarray,
                    end: int, period: int, threshold: float = 0.0) -> RegimeState:
    """
    Classify bar `end` from causal arrays computed over the full series.
    Only values at indices <= end are read.
    """
    n = end + 1
    if n < period * 2:
        return RegimeState(MarketState.INSUFFICIENT_DATA)

    bbw_w = bbw[:n]
    if threshold > 0:
        normalized = normalize_bandwidth(bbw_w, period)
        if not abs(normalized[-1]) >= threshold:
            return RegimeState(MarketState.NEUTRAL, bbw=float(bbw_w[-1]))

    atr_tail = _last_defined(atr[:n], 3)
    if atr_tail is None:
        return RegimeState(MarketState.INSUFFICIENT_ATR, bbw=float(bbw_w[-1]))
    atr_up = atr_tail[2] > atr_tail[1] > atr_tail[0]

    smoothed = ema(bbw_w, BBW_SMOOTHING)
    ema_tail = _last_defined(smoothed, 3)
    if ema_tail is None:
        return RegimeState(MarketState.INSUFFICIENT_BBW_SERIES, bbw=float(bbw_w[-1]))

    current_bbw = float(bbw_w[-1])
    bbw_avg = float(ema_tail[2])
    bbw_up = ema_tail[2] > ema_tail[1] > ema_tail[0] and current_bbw > bbw_avg
    bbw_down = ema_tail[2] < ema_tail[1] < ema_tail[0] and current_bbw < bbw_avg

    price = close[end]
    m1 = middle[end]
    m2 = middle[end - 1]
    center_up = price > m1 > m2
    center_down = price < m1 < m2

    if bbw_down:
        status = MarketState.SQUEEZE
    elif bbw_up:
        if center_up and atr_up:
            status = MarketState.EXPANDING_BULLISH
        elif center_down and atr_up:
            status = MarketState.EXPANDING_BEARISH
        else:
            status = MarketState.NEUTRAL
    elif center_up and atr_up:
        status = MarketState.EXPANDING_BULLISH
    elif center_down and atr_up:
        status = MarketState.EXPANDING_BEARISH
    else:
        status = MarketState.NEUTRAL

    return RegimeState(status=status, bbw=current_bbw, bbw_avg=bbw_avg, bbw_trend_up=bool(bbw_up))


def detect_regime(series: BarSeries, period: int = 20, multiplier: float = 2.0,
                  threshold: float = 0.0) -> RegimeState:
    """Regime of the last bar of `series`, computed from that window alone."""
    if len(series) < period * 2:
        return RegimeState(MarketState.INSUFFICIENT_DATA)

    bbw, _, middle, _ = bollinger_bandwidth(series.closes, period, multiplier)
    atr = average_true_range(series.highs, series.lows, series.closes, ATR_PERIOD)
    return classify_regime(series.closes, middle, bbw, atr, len(series) - 1, period, threshold)
