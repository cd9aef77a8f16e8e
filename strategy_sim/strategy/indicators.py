"""
Indicator pipeline.

Every function takes full, aligned price arrays and returns a numpy array of
the same length. Indices before the warm-up window, and indices where the
computation degenerates (zero variance, zero volume, zero range), hold NaN.
NaN compares False against anything, so downstream rules treat it as
"condition not met".
"""

import logging
from dataclasses import dataclass, fields
from typing import Dict, Tuple

import numpy as np
import pandas as pd
import ta
from numpy.lib.stride_tricks import sliding_window_view

from strategy_sim.config import SimulationConfig, ATR_PERIOD
from strategy_sim.core.series import BarSeries

logger = logging.getLogger("strategy_sim.strategy.indicators")

# Relative tolerance under which a standard deviation counts as zero
_ZERO_STD = 1e-12


def _as_series(values) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float).reset_index(drop=True)
    return pd.Series(np.asarray(values, dtype=float))


def _is_zero_std(std: np.ndarray, mean: np.ndarray) -> np.ndarray:
    return std <= _ZERO_STD * np.maximum(np.abs(mean), 1.0)


def ema(values, period: int) -> np.ndarray:
    s = _as_series(values)
    if len(s) == 0:
        return np.array([], dtype=float)
    return ta.trend.ema_indicator(s, window=period, fillna=False).to_numpy(dtype=float)


def zscore(close, period: int) -> np.ndarray:
    """Rolling (close - SMA) / population std."""
    s = _as_series(close)
    mean = s.rolling(window=period, min_periods=period).mean()
    std = s.rolling(window=period, min_periods=period).std(ddof=0)

    mean_arr = mean.to_numpy()
    std_arr = std.to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        z = (s.to_numpy() - mean_arr) / std_arr
    z[np.isnan(std_arr) | _is_zero_std(std_arr, mean_arr)] = np.nan
    return z


def vw_zscore(close, volume, period: int, min_std: float = 0.0) -> np.ndarray:
    """
    Volume weighted Z-score over the window [i-period+1, i].
    Undefined when the window volume is zero or the weighted std is below min_std.
    """
    c = np.asarray(close, dtype=float)
    v = np.asarray(volume, dtype=float)
    out = np.full(len(c), np.nan)
    if len(c) < period:
        return out

    cw = sliding_window_view(c, period)
    vw = sliding_window_view(v, period)
    weight_sum = vw.sum(axis=1)

    with np.errstate(divide="ignore", invalid="ignore"):
        mean = (cw * vw).sum(axis=1) / weight_sum
        variance = (vw * (cw - mean[:, None]) ** 2).sum(axis=1) / weight_sum
        std = np.sqrt(np.maximum(variance, 0.0))
        z = (c[period - 1:] - mean) / std

    valid = (weight_sum != 0) & np.isfinite(std) & (std >= min_std) & ~_is_zero_std(std, mean)
    out[period - 1:] = np.where(valid, z, np.nan)
    return out


def adaptive_vw_zscore(close, strength, base_period: int,
                       min_strength: float, max_strength: float) -> np.ndarray:
    """
    Single pass exponential mean/variance Z-score whose smoothing constant is
    re-derived each bar from the trend strength reading (ADX).

    Strength is clamped to [min_strength, max_strength] and mapped linearly to
    a period between base_period // 2 (strongest trend, fastest) and
    base_period * 2 (weakest, slowest). Where strength is undefined the
    running moments keep moving with a fixed decay of 0.1.
    """
    c = np.asarray(close, dtype=float)
    s = np.asarray(strength, dtype=float)
    if len(c) != len(s):
        raise ValueError(f"close ({len(c)}) and strength ({len(s)}) must be aligned")

    out = np.full(len(c), np.nan)
    if len(c) == 0:
        return out

    min_period = max(1, base_period // 2)
    max_period = base_period * 2
    span = max_strength - min_strength

    mean = c[0]
    mean_sq = c[0] * c[0]
    for i in range(1, len(c)):
        price = c[i]
        if np.isnan(s[i]):
            mean = mean * 0.9 + price * 0.1
            mean_sq = mean_sq * 0.9 + price * price * 0.1
            continue

        clamped = min(max(s[i], min_strength), max_strength)
        ratio = (clamped - min_strength) / span
        period = max_period - ratio * (max_period - min_period)
        alpha = 2.0 / (period + 1.0)

        mean = (1 - alpha) * mean + alpha * price
        mean_sq = (1 - alpha) * mean_sq + alpha * price * price

        std = np.sqrt(max(mean_sq - mean * mean, 0.0))
        if std > _ZERO_STD * max(abs(mean), 1.0):
            out[i] = (price - mean) / std
    return out


def bollinger_bandwidth(close, period: int, multiplier: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    EMA centred bands with population std.
    Returns (bbw, upper, middle, lower); bbw = (upper - lower) / middle, 0 if middle is 0.
    """
    s = _as_series(close)
    middle = ema(s, period)
    std = s.rolling(window=period, min_periods=period).std(ddof=0).to_numpy()
    upper = middle + multiplier * std
    lower = middle - multiplier * std

    with np.errstate(divide="ignore", invalid="ignore"):
        bbw = np.where(middle == 0, 0.0, (upper - lower) / middle)
    bbw[np.isnan(upper) | np.isnan(lower)] = np.nan
    return bbw, upper, middle, lower


def normalize_bandwidth(bbw, window: int) -> np.ndarray:
    """Z-score of bbw[i] against the trailing window bbw[i-window:i]."""
    s = _as_series(bbw)
    trailing = s.shift(1)
    mean = trailing.rolling(window=window, min_periods=window).mean().to_numpy()
    std = trailing.rolling(window=window, min_periods=window).std(ddof=0).to_numpy()

    with np.errstate(divide="ignore", invalid="ignore"):
        z = (s.to_numpy() - mean) / std
    z[np.isnan(std) | _is_zero_std(std, mean)] = np.nan
    return z


def directional_movement(high, low, close, period: int) -> Dict[str, np.ndarray]:
    """
    Wilder smoothed directional movement family.
    Returns dict with keys: atr, plus_di, minus_di, dx, adx.
    """
    h = _as_series(high)
    lo = _as_series(low)
    c = _as_series(close)

    prev_close = c.shift(1)
    tr = pd.concat([h - lo, (h - prev_close).abs(), (lo - prev_close).abs()], axis=1).max(axis=1)

    up_move = h.diff()
    down_move = -lo.diff()
    plus_dm = pd.Series(np.where((up_move > down_move) & (up_move > 0), up_move, 0.0))
    minus_dm = pd.Series(np.where((down_move > up_move) & (down_move > 0), down_move, 0.0))

    def wilder(x: pd.Series) -> pd.Series:
        return x.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()

    atr = wilder(tr).to_numpy()
    degenerate = np.isnan(atr) | (atr <= 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        plus_di = 100.0 * wilder(plus_dm).to_numpy() / atr
        minus_di = 100.0 * wilder(minus_dm).to_numpy() / atr
    plus_di[degenerate] = np.nan
    minus_di[degenerate] = np.nan

    di_sum = plus_di + minus_di
    with np.errstate(divide="ignore", invalid="ignore"):
        dx = 100.0 * np.abs(plus_di - minus_di) / di_sum
    dx[~(di_sum > 0)] = np.nan

    adx = wilder(pd.Series(dx)).to_numpy()
    return {"atr": atr, "plus_di": plus_di, "minus_di": minus_di, "dx": dx, "adx": adx}


def macd(close, fast: int = 12, slow: int = 26, signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Returns (macd, signal, histogram)."""
    s = _as_series(close)
    if len(s) == 0:
        empty = np.array([], dtype=float)
        return empty, empty, empty
    ind = ta.trend.MACD(close=s, window_slow=slow, window_fast=fast, window_sign=signal, fillna=False)
    return (ind.macd().to_numpy(dtype=float),
            ind.macd_signal().to_numpy(dtype=float),
            ind.macd_diff().to_numpy(dtype=float))


def average_true_range(high, low, close, period: int = ATR_PERIOD) -> np.ndarray:
    h = _as_series(high)
    lo = _as_series(low)
    c = _as_series(close)
    out = np.full(len(c), np.nan)
    if len(c) < period:
        return out
    atr = ta.volatility.AverageTrueRange(high=h, low=lo, close=c, window=period, fillna=False)
    values = atr.average_true_range().to_numpy(dtype=float)
    out[period - 1:] = values[period - 1:]
    return out


def box_filter(high, low, period: int, min_range_pct: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Range of the last `period` bars as a fraction of the lowest low.
    Returns (range_pct, ranging) where ranging = range_pct < min_range_pct.
    """
    h = _as_series(high)
    lo = _as_series(low)
    highest = h.rolling(window=period, min_periods=period).max().to_numpy()
    lowest = lo.rolling(window=period, min_periods=period).min().to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        range_pct = (highest - lowest) / lowest
    range_pct[~(lowest > 0)] = np.nan
    ranging = range_pct < min_range_pct
    return range_pct, ranging


@dataclass(frozen=True)
class IndicatorSeries:
    """Indicator arrays aligned 1:1 with a BarSeries. Read-only after construction."""
    ema_short: np.ndarray
    ema_long: np.ndarray
    zscore: np.ndarray
    vwz: np.ndarray
    adaptive_vwz: np.ndarray
    bbw: np.ndarray
    bbw_zscore: np.ndarray
    bb_middle: np.ndarray
    atr: np.ndarray
    adx: np.ndarray
    plus_di: np.ndarray
    minus_di: np.ndarray
    dx: np.ndarray
    macd: np.ndarray
    macd_signal: np.ndarray
    macd_hist: np.ndarray
    box_range: np.ndarray
    ranging: np.ndarray

    def __post_init__(self):
        lengths = {f.name: len(getattr(self, f.name)) for f in fields(self)}
        if len(set(lengths.values())) > 1:
            raise ValueError(f"Indicator arrays are not aligned: {lengths}")
        for f in fields(self):
            getattr(self, f.name).flags.writeable = False

    def __len__(self) -> int:
        return len(self.ema_short)

    def names(self):
        return [f.name for f in fields(self)]

    def to_dataframe(self, index=None) -> pd.DataFrame:
        return pd.DataFrame({name: getattr(self, name) for name in self.names()}, index=index)


class IndicatorCalculator:
    """
    Computes every indicator once, ahead of the replay loop.
    """

    @staticmethod
    def calculate(series: BarSeries, config: SimulationConfig) -> IndicatorSeries:
        close = series.closes
        high = series.highs
        low = series.lows
        volume = series.volumes

        dmi = directional_movement(high, low, close, config.adx_period)
        bbw, _, middle, _ = bollinger_bandwidth(close, config.bbw_period, config.bbw_multiplier)
        macd_line, macd_signal, macd_hist = macd(close, config.macd_fast, config.macd_slow, config.macd_signal)
        box_range, ranging = box_filter(high, low, config.box_filter.period, config.box_filter.min_range_pct)

        indicators = IndicatorSeries(
            ema_short=ema(close, config.ema_period),
            ema_long=ema(close, config.resolved_ema_long_period),
            zscore=zscore(close, config.vwz_period),
            vwz=vw_zscore(close, volume, config.vwz_period, config.vwz_min_std),
            adaptive_vwz=adaptive_vw_zscore(close, dmi["adx"], config.vwz_period,
                                            config.adaptive_min_strength, config.adaptive_max_strength),
            bbw=bbw,
            bbw_zscore=normalize_bandwidth(bbw, config.bbw_normalize_window),
            bb_middle=middle,
            atr=average_true_range(high, low, close, ATR_PERIOD),
            adx=dmi["adx"],
            plus_di=dmi["plus_di"],
            minus_di=dmi["minus_di"],
            dx=dmi["dx"],
            macd=macd_line,
            macd_signal=macd_signal,
            macd_hist=macd_hist,
            box_range=box_range,
            ranging=ranging,
        )
        logger.debug(f"[INDICATORS] Computed {len(indicators.names())} series over {len(series)} bars")
        return indicators
