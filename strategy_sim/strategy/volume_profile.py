import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from strategy_sim.config import VolumeClusterConfig
from strategy_sim.core.series import BarSeries

logger = logging.getLogger("strategy_sim.strategy.volume_profile")


@dataclass(frozen=True)
class VolumeProfile:
    """
    Point of control plus secondary high-volume levels.
    upper_levels: above the reference price, nearest first (ascending).
    lower_levels: at or below the reference price, nearest first (descending).
    """
    poc: float = 0.0
    upper_levels: Tuple[float, ...] = ()
    lower_levels: Tuple[float, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.poc == 0.0 and not self.upper_levels and not self.lower_levels

    def all_levels(self) -> List[float]:
        return [self.poc, *self.upper_levels, *self.lower_levels]


VolumeProfile.EMPTY = VolumeProfile()


def _bin_volumes(highs: np.ndarray, lows: np.ndarray, volumes: np.ndarray,
                 bin_size: float) -> Tuple[int, np.ndarray]:
    """
    Spreads each bar's volume uniformly over every bin its [low, high] touches.
    Returns (first bin number, dense volume per bin).
    """
    traded = volumes > 0
    highs, lows, volumes = highs[traded], lows[traded], volumes[traded]
    if len(volumes) == 0:
        return 0, np.array([], dtype=float)

    lo_bins = np.floor(np.minimum(lows, highs) / bin_size).astype(np.int64)
    hi_bins = np.floor(np.maximum(lows, highs) / bin_size).astype(np.int64)
    counts = hi_bins - lo_bins + 1
    shares = volumes / counts

    # One entry per (bar, touched bin)
    starts = np.repeat(np.cumsum(counts) - counts, counts)
    offsets = np.arange(counts.sum()) - starts
    bin_ids = np.repeat(lo_bins, counts) + offsets
    weights = np.repeat(shares, counts)

    first = int(bin_ids.min())
    return first, np.bincount(bin_ids - first, weights=weights)


def calculate_volume_profile(highs, lows, volumes, reference_price: float,
                             bin_size_pct: float, min_distance_pct: float) -> VolumeProfile:
    """
    Builds the profile of a bar window.

    1. bin size = reference_price * bin_size_pct / 100 (1.0 when not positive)
    2. POC = bin with the highest volume, priced at its midpoint
    3. candidates = bins strictly above both neighbours, plus the POC
    4. candidates ranked by volume, kept only if farther than the minimum
       distance from every level already kept
    5. kept levels other than the POC split around the reference price
    """
    highs = np.asarray(highs, dtype=float)
    lows = np.asarray(lows, dtype=float)
    volumes = np.asarray(volumes, dtype=float)
    if len(highs) == 0:
        return VolumeProfile.EMPTY

    bin_size = reference_price * bin_size_pct / 100.0
    if not bin_size > 0:
        bin_size = 1.0

    first_bin, bins = _bin_volumes(highs, lows, volumes, bin_size)
    if len(bins) == 0:
        return VolumeProfile.EMPTY

    def price_of(idx: int) -> float:
        return (first_bin + idx) * bin_size + bin_size / 2.0

    # argmax returns the first (lowest price) bin on ties
    poc_idx = int(np.argmax(bins))

    # Interior bins only; the outermost bins have an empty neighbour by construction
    inner = bins[1:-1]
    is_peak = (inner > 0) & (inner > bins[:-2]) & (inner > bins[2:])
    candidates = set((np.flatnonzero(is_peak) + 1).tolist())
    candidates.add(poc_idx)

    min_distance = reference_price * min_distance_pct / 100.0
    kept: List[int] = []
    for idx in sorted(candidates, key=lambda b: (-bins[b], b)):
        price = price_of(idx)
        if all(abs(price - price_of(k)) > min_distance for k in kept):
            kept.append(idx)

    levels = [price_of(idx) for idx in kept if idx != poc_idx]
    upper = sorted(p for p in levels if p > reference_price)
    lower = sorted((p for p in levels if p <= reference_price), reverse=True)

    return VolumeProfile(poc=price_of(poc_idx), upper_levels=tuple(upper), lower_levels=tuple(lower))


class VolumeProfileCalculator:
    """Profile of the trailing lookback window ending at a bar index."""

    def __init__(self, config: VolumeClusterConfig):
        self.config = config

    def at(self, series: BarSeries, i: int) -> VolumeProfile:
        start = max(0, i + 1 - self.config.lookback_period)
        stop = i + 1
        return calculate_volume_profile(
            series.highs[start:stop],
            series.lows[start:stop],
            series.volumes[start:stop],
            reference_price=float(series.closes[i]),
            bin_size_pct=self.config.bin_size_pct,
            min_distance_pct=self.config.min_poc_distance,
        )
