import logging
from typing import List, Optional

from strategy_sim.config import SimulationConfig
from strategy_sim.core.schema import Direction, EntrySignal
from strategy_sim.core.series import BarSeries
from strategy_sim.strategy.conditions import Decision, get_condition
from strategy_sim.strategy.indicators import IndicatorCalculator, IndicatorSeries
from strategy_sim.strategy.snapshot import IndicatorSnapshot, SnapshotBuilder, last

logger = logging.getLogger("strategy_sim.strategy.signals")


def passes_entry_gate(snapshot: IndicatorSnapshot, config: SimulationConfig) -> bool:
    """
    Trend strength must sit strictly inside (adx_threshold, adx_upper_threshold);
    an undefined ADX never passes. Optionally vetoed while the box filter flags
    a ranging market.
    """
    adx = last(snapshot.adx)
    if not adx > config.adx_threshold:
        return False
    if config.adx_upper_threshold is not None and not adx < config.adx_upper_threshold:
        return False
    if config.box_filter.enabled and snapshot.ranging:
        return False
    return True


def determine_entry_signal(long_decision: Decision, short_decision: Decision,
                           snapshot: IndicatorSnapshot, config: SimulationConfig) -> Optional[Direction]:
    """Direction to enter at this bar, long taking precedence; None for no entry."""
    if not passes_entry_gate(snapshot, config):
        return None
    if long_decision.enter:
        return Direction.LONG
    if short_decision.enter:
        return Direction.SHORT
    return None


def generate_all_signals(series: BarSeries, config: SimulationConfig,
                         indicators: Optional[IndicatorSeries] = None) -> List[EntrySignal]:
    """
    Entry signals for every bar past warm-up, independent of position state.
    """
    long_condition = get_condition(config.long_condition, Direction.LONG)
    short_condition = get_condition(config.short_condition, Direction.SHORT)

    if indicators is None:
        indicators = IndicatorCalculator.calculate(series, config)
    builder = SnapshotBuilder(series, indicators, config)

    signals = []
    for i in range(config.warmup_bars, len(series)):
        snapshot = builder.build(i)
        direction = determine_entry_signal(
            long_condition.evaluate(snapshot, config),
            short_condition.evaluate(snapshot, config),
            snapshot,
            config,
        )
        if direction is not None:
            signals.append(EntrySignal(index=i, timestamp=snapshot.timestamp,
                                       price=snapshot.close, direction=direction))

    logger.info(f"[SIGNALS] {len(signals)} entry signals over {len(series)} bars "
                f"({config.long_condition}/{config.short_condition})")
    return signals
