import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, Tuple

import numpy as np

from strategy_sim.config import SimulationConfig
from strategy_sim.core.schema import Bar, RegimeState
from strategy_sim.core.series import BarSeries
from strategy_sim.strategy.indicators import IndicatorSeries
from strategy_sim.strategy.regime import classify_regime
from strategy_sim.strategy.volume_profile import VolumeProfile, VolumeProfileCalculator

logger = logging.getLogger("strategy_sim.strategy.snapshot")

HISTORY = 3

# Indicator series carried into every snapshot as short windows
WINDOW_FIELDS = (
    "ema_short", "ema_long", "zscore", "vwz", "adaptive_vwz", "bbw", "bbw_zscore",
    "adx", "plus_di", "minus_di", "dx", "macd", "macd_signal", "macd_hist",
)


def last(values: np.ndarray) -> float:
    """Last value of a window, NaN when the window is empty."""
    if len(values) == 0:
        return float("nan")
    return float(values[-1])


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Everything a condition may look at for bar `index`.
    Window fields are read-only views of at most 3 values, oldest first,
    ending at `index`.
    """
    index: int
    timestamp: datetime
    close: float
    ema_short: np.ndarray
    ema_long: np.ndarray
    zscore: np.ndarray
    vwz: np.ndarray
    adaptive_vwz: np.ndarray
    bbw: np.ndarray
    bbw_zscore: np.ndarray
    adx: np.ndarray
    plus_di: np.ndarray
    minus_di: np.ndarray
    dx: np.ndarray
    macd: np.ndarray
    macd_signal: np.ndarray
    macd_hist: np.ndarray
    ranging: bool
    regime: RegimeState
    volume_profile: VolumeProfile
    bars: Tuple[Bar, ...]

    @property
    def current_bar(self) -> Bar:
        return self.bars[-1]

    @property
    def previous_bar(self):
        return self.bars[-2] if len(self.bars) > 1 else None

    def to_dict(self) -> Dict[str, Any]:
        """Flat view of the latest values, used in trade ledgers."""
        data: Dict[str, Any] = {name: last(getattr(self, name)) for name in WINDOW_FIELDS}
        data["ranging"] = self.ranging
        data["regime"] = self.regime.status.value
        data["poc"] = self.volume_profile.poc
        return data


class SnapshotBuilder:
    """
    Assembles per-index snapshots from indicator arrays computed once.
    The regime and the volume profile are recomputed for every index.
    """

    def __init__(self, series: BarSeries, indicators: IndicatorSeries, config: SimulationConfig):
        if len(series) != len(indicators):
            raise ValueError(f"Series ({len(series)}) and indicators ({len(indicators)}) are not aligned")
        self.series = series
        self.indicators = indicators
        self.config = config
        self.profiles = VolumeProfileCalculator(config.volume_cluster)

    def build(self, i: int) -> IndicatorSnapshot:
        if not 0 <= i < len(self.series):
            raise IndexError(f"snapshot index {i} out of range for series of {len(self.series)} bars")

        start = max(0, i - (HISTORY - 1))
        stop = i + 1
        windows = {name: getattr(self.indicators, name)[start:stop] for name in WINDOW_FIELDS}

        regime = classify_regime(
            self.series.closes,
            self.indicators.bb_middle,
            self.indicators.bbw,
            self.indicators.atr,
            end=i,
            period=self.config.bbw_period,
            threshold=self.config.bbw_threshold,
        )

        return IndicatorSnapshot(
            index=i,
            timestamp=self.series.timestamps[i].to_pydatetime(),
            close=float(self.series.closes[i]),
            ranging=bool(self.indicators.ranging[i]),
            regime=regime,
            volume_profile=self.profiles.at(self.series, i),
            bars=tuple(self.series.bars(i - 1, i + 1)),
            **windows,
        )

    def stream(self) -> Iterator[IndicatorSnapshot]:
        """Every snapshot in index order, for charting and diagnostics."""
        for i in range(len(self.series)):
            yield self.build(i)
