"""
Single-asset strategy simulator: indicators, pluggable entry/exit conditions
and a bar-by-bar backtest state machine producing a trade ledger.
"""
from .config import SimulationConfig, VolumeClusterConfig, BoxFilterConfig, ConfigError
from .core.schema import (
    Bar, Direction, ExitReason, MarketState, EngineState, Position, Trade,
    EntrySignal, BacktestResult, RegimeState,
)
from .core.series import BarSeries, DataError
from .core.engine import BacktestEngine, EngineStateError, run_backtest
from .strategy.indicators import IndicatorCalculator, IndicatorSeries
from .strategy.snapshot import IndicatorSnapshot, SnapshotBuilder
from .strategy.conditions import get_condition, available_conditions
from .strategy.signals import determine_entry_signal, generate_all_signals
from .analytics.metrics import MetricsCalculator, TradeStatistics

__version__ = "0.1.0"
