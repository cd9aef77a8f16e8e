"""
Entry/exit conditions.

A condition looks at one IndicatorSnapshot (plus the run configuration) and
answers for its own side: should a position be opened, and should an open
position on this side be force-closed. Both False means "no opinion".

Conditions are registered per side under a string key so that the engine can
be pointed at any of them from configuration.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Union

import numpy as np

from strategy_sim.config import SimulationConfig, ConfigError
from strategy_sim.core.schema import Bar, Direction, MarketState
from strategy_sim.strategy.patterns import PatternRecognizer
from strategy_sim.strategy.snapshot import IndicatorSnapshot, last

logger = logging.getLogger("strategy_sim.strategy.conditions")

DEFAULT_PROXIMITY_PCT = 0.2


class Decision(NamedTuple):
    enter: bool = False
    force_exit: bool = False


NO_OPINION = Decision(False, False)
ENTER = Decision(True, False)
FORCE_EXIT = Decision(False, True)


def _rising(values: np.ndarray) -> bool:
    return len(values) >= 2 and values[-1] > values[-2]


def _falling(values: np.ndarray) -> bool:
    return len(values) >= 2 and values[-1] < values[-2]


class EntryCondition(ABC):
    """
    Abstract base that all conditions implement. One instance per side.
    """
    name = ""

    def __init__(self, direction: Direction):
        self.direction = direction

    @property
    def is_long(self) -> bool:
        return self.direction is Direction.LONG

    @abstractmethod
    def evaluate(self, snapshot: IndicatorSnapshot, config: SimulationConfig) -> Decision:
        """
        Returns the decision for this side at the snapshot's bar.
        """
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}({self.direction.value})"


class DefaultCondition(EntryCondition):
    """EMA trend filter plus a bound on the Z-score (pullback when the bound is 0)."""
    name = "default"

    def evaluate(self, snapshot, config):
        ema_s = last(snapshot.ema_short)
        ema_l = last(snapshot.ema_long)
        z = last(snapshot.zscore)
        if self.is_long:
            ok = ema_s > ema_l and z < config.zscore_threshold
        else:
            ok = ema_s < ema_l and z > -config.zscore_threshold
        return ENTER if ok else NO_OPINION


class MACDCondition(EntryCondition):
    """Histogram zero crossing."""
    name = "macd"

    def evaluate(self, snapshot, config):
        hist = snapshot.macd_hist
        if len(hist) < 2:
            return NO_OPINION
        prev, curr = hist[-2], hist[-1]
        if self.is_long:
            ok = prev < 0 < curr
        else:
            ok = prev > 0 > curr
        return ENTER if ok else NO_OPINION


class BBWCondition(EntryCondition):
    """
    Band-width expansion: normalized band-width beyond 1 sigma, matching
    Expanding regime, EMA trend with rising (falling) short EMA and VWZ, and
    the side's directional indicator dominant.
    """
    name = "bbw"
    BBW_Z_LEVEL = 1.0

    def evaluate(self, snapshot, config):
        bbw_z = last(snapshot.bbw_zscore)
        ema_s = last(snapshot.ema_short)
        ema_l = last(snapshot.ema_long)
        plus_di = last(snapshot.plus_di)
        minus_di = last(snapshot.minus_di)
        status = snapshot.regime.status

        if self.is_long:
            ok = (bbw_z > self.BBW_Z_LEVEL
                  and status is MarketState.EXPANDING_BULLISH
                  and ema_s > ema_l
                  and _rising(snapshot.ema_short)
                  and _rising(snapshot.vwz)
                  and plus_di > minus_di)
        else:
            ok = (bbw_z < -self.BBW_Z_LEVEL
                  and status is MarketState.EXPANDING_BEARISH
                  and ema_s < ema_l
                  and _falling(snapshot.ema_short)
                  and _falling(snapshot.vwz)
                  and plus_di < minus_di)
        return ENTER if ok else NO_OPINION


class InverseCondition(EntryCondition):
    """Extreme normalized band-width in either direction, traded with the EMA trend."""
    name = "inverse"
    BBW_Z_EXTREME = 2.5

    def evaluate(self, snapshot, config):
        bbw_z = last(snapshot.bbw_zscore)
        if not abs(bbw_z) > self.BBW_Z_EXTREME:
            return NO_OPINION
        ema_s = last(snapshot.ema_short)
        ema_l = last(snapshot.ema_long)
        ok = ema_s > ema_l if self.is_long else ema_s < ema_l
        return ENTER if ok else NO_OPINION


class DMICondition(EntryCondition):
    """
    Directional movement filter: ADX above threshold and rising, DI spread
    at least dmi_dx_threshold, and the side's DI dominant and rising.
    """
    name = "dmi"

    def evaluate(self, snapshot, config):
        adx = snapshot.adx
        if len(adx) < 2:
            return NO_OPINION
        if not (adx[-1] > config.adx_threshold and adx[-1] > adx[-2]):
            return NO_OPINION

        plus_di = last(snapshot.plus_di)
        minus_di = last(snapshot.minus_di)
        if not abs(plus_di - minus_di) >= config.dmi_dx_threshold:
            return NO_OPINION

        if self.is_long:
            ok = plus_di > minus_di and _rising(snapshot.plus_di)
        else:
            ok = plus_di < minus_di and _rising(snapshot.minus_di)
        return ENTER if ok else NO_OPINION


class PatternTrend(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    MIXED = "mixed"


def analyze_pattern(values: np.ndarray) -> PatternTrend:
    """
    Sign-aware trend of exactly three samples.
    Non-negative series: a < b < c is increasing.
    Non-positive series: a > b > c (growing in magnitude) is increasing.
    Mixed signs or undefined samples are mixed.
    """
    if len(values) != 3:
        return PatternTrend.MIXED
    a, b, c = values
    if a >= 0 and b >= 0 and c >= 0:
        if a < b < c:
            return PatternTrend.INCREASING
        if a > b > c:
            return PatternTrend.DECREASING
        return PatternTrend.MIXED
    if a <= 0 and b <= 0 and c <= 0:
        if a > b > c:
            return PatternTrend.INCREASING
        if a < b < c:
            return PatternTrend.DECREASING
        return PatternTrend.MIXED
    return PatternTrend.MIXED


def detect_volatility_explosion(values: np.ndarray, ratio: float) -> bool:
    """Two consecutive expansions by at least `ratio`."""
    if len(values) != 3:
        return False
    a, b, c = values
    return bool(b > a * ratio and c > b * ratio)


def detect_spike(values: np.ndarray, threshold: float) -> bool:
    """Any single step moving by more than `threshold`."""
    if len(values) < 2:
        return False
    return bool(np.any(np.abs(np.diff(values)) > threshold))


class CombinedCondition(EntryCondition):
    """
    Agreement of every series: Z-score, VWZ, normalized band-width and ADX all
    strengthening, the side's DI increasing while the other decreases, and no
    volatility explosion or one-step spike in Z-score, VWZ or band-width.
    """
    name = "combined"

    def evaluate(self, snapshot, config):
        strengthening = all(
            analyze_pattern(series) is PatternTrend.INCREASING
            for series in (snapshot.zscore, snapshot.vwz, snapshot.bbw_zscore, snapshot.adx)
        )
        if not strengthening:
            return NO_OPINION

        plus_trend = analyze_pattern(snapshot.plus_di)
        minus_trend = analyze_pattern(snapshot.minus_di)
        if self.is_long:
            aligned = plus_trend is PatternTrend.INCREASING and minus_trend is PatternTrend.DECREASING
        else:
            aligned = plus_trend is PatternTrend.DECREASING and minus_trend is PatternTrend.INCREASING
        if not aligned:
            return NO_OPINION

        if detect_volatility_explosion(snapshot.bbw_zscore, config.volatility_explosion_ratio):
            return NO_OPINION
        if (detect_spike(snapshot.zscore, config.z_spike_threshold)
                or detect_spike(snapshot.vwz, config.vwz_spike_threshold)
                or detect_spike(snapshot.bbw_zscore, config.bbw_spike_threshold)):
            return NO_OPINION
        return ENTER


def is_touching_level(bar: Bar, levels: Iterable[float], proximity_pct: float) -> bool:
    """True if [low, high] intersects any [level - band, level + band], band = level * pct / 100."""
    for level in levels:
        band = level * proximity_pct / 100.0
        if max(bar.low, level - band) <= min(bar.high, level + band):
            return True
    return False


class VolumeClusterCondition(EntryCondition):
    """
    Volume profile reversal.

    Long: bar touches support (a lower level, or the POC while price is above
    it) with a hammer or bullish engulfing => enter. Otherwise touching
    resistance (an upper level, or the POC while price is below it) or a
    bearish pattern => force exit. Short is the mirror image. A Doji bar
    gives no opinion at all.
    """
    name = "volume_cluster"

    def _levels(self, snapshot: IndicatorSnapshot, support: bool) -> List[float]:
        profile = snapshot.volume_profile
        curr = snapshot.current_bar
        if support:
            levels = list(profile.lower_levels)
            if profile.poc > 0 and curr.close > profile.poc:
                levels.append(profile.poc)
        else:
            levels = list(profile.upper_levels)
            if profile.poc > 0 and curr.close < profile.poc:
                levels.append(profile.poc)
        return levels

    def evaluate(self, snapshot, config):
        if len(snapshot.bars) < 2:
            return NO_OPINION

        prev, curr = snapshot.bars[-2], snapshot.bars[-1]
        if PatternRecognizer.is_doji(curr):
            return NO_OPINION

        proximity = config.volume_cluster.poc_proximity or DEFAULT_PROXIMITY_PCT
        match = PatternRecognizer.check_patterns(prev, curr)

        near_support = is_touching_level(curr, self._levels(snapshot, support=True), proximity)
        near_resistance = is_touching_level(curr, self._levels(snapshot, support=False), proximity)

        if self.is_long:
            if near_support and match.bullish:
                return ENTER
            if near_resistance or match.bearish:
                return FORCE_EXIT
        else:
            if near_resistance and match.bearish:
                return ENTER
            if near_support or match.bullish:
                return FORCE_EXIT
        return NO_OPINION


CONDITION_TYPES = {
    cls.name: cls
    for cls in (DefaultCondition, MACDCondition, BBWCondition, CombinedCondition,
                InverseCondition, DMICondition, VolumeClusterCondition)
}

LONG_CONDITIONS: Dict[str, EntryCondition] = {name: cls(Direction.LONG) for name, cls in CONDITION_TYPES.items()}
SHORT_CONDITIONS: Dict[str, EntryCondition] = {name: cls(Direction.SHORT) for name, cls in CONDITION_TYPES.items()}


def _registry(direction: Union[Direction, str]) -> Dict[str, EntryCondition]:
    value = direction.value if isinstance(direction, Direction) else direction
    if value == Direction.LONG.value:
        return LONG_CONDITIONS
    if value == Direction.SHORT.value:
        return SHORT_CONDITIONS
    raise ConfigError(f"invalid direction for entry condition: {direction}")


def get_condition(name: str, direction: Union[Direction, str]) -> EntryCondition:
    registry = _registry(direction)
    condition = registry.get(name)
    if condition is None:
        side = direction.value if isinstance(direction, Direction) else direction
        raise ConfigError(f"no {side} entry condition found for name: {name}")
    return condition


def available_conditions(direction: Union[Direction, str]) -> List[str]:
    return sorted(_registry(direction))
