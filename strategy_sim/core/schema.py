from dataclasses import dataclass, field, fields
from enum import Enum
from datetime import datetime
from types import MappingProxyType
from typing import List, Dict, Any, Mapping, Tuple

import pandas as pd


class Direction(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> 'Direction':
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class ExitReason(Enum):
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"
    SIGNAL = "Signal"
    COMBINED = "Combined"
    MIN_SIZE = "MinSize"
    END_OF_DATA = "EndOfData"


class MarketState(Enum):
    INSUFFICIENT_DATA = "InsufficientData"
    INSUFFICIENT_ATR = "InsufficientATR"
    INSUFFICIENT_BBW_SERIES = "InsufficientBBWSeries"
    NEUTRAL = "Neutral"
    SQUEEZE = "Squeeze"
    EXPANDING_BULLISH = "ExpandingBullish"
    EXPANDING_BEARISH = "ExpandingBearish"

    @property
    def is_insufficient(self) -> bool:
        return self in (MarketState.INSUFFICIENT_DATA,
                        MarketState.INSUFFICIENT_ATR,
                        MarketState.INSUFFICIENT_BBW_SERIES)


class EngineState(Enum):
    FLAT = "Flat"
    LONG_OPEN = "LongOpen"
    SHORT_OPEN = "ShortOpen"
    BOTH_OPEN = "BothOpen"


@dataclass(frozen=True)
class Bar:
    """
    Atomic unit of OHLCV data.
    Frozen to prevent accidental mutation during backtest.
    """
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low


@dataclass(frozen=True)
class RegimeState:
    status: MarketState
    bbw: float = float("nan")
    bbw_avg: float = float("nan")
    bbw_trend_up: bool = False


@dataclass
class Position:
    """Open leg. Owned and mutated by the engine only."""
    direction: Direction
    entry_index: int
    entry_time: datetime
    entry_price: float
    size: float
    take_profit: float
    stop_loss: float
    entry_snapshot: Dict[str, Any] = field(default_factory=dict)

    def unrealized_pnl(self, price: float) -> float:
        if self.direction is Direction.LONG:
            return (price - self.entry_price) * self.size
        return (self.entry_price - price) * self.size


@dataclass(frozen=True)
class Trade:
    """Closed leg. The entry snapshot is a read-only mapping."""
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    direction: Direction
    size: float
    pnl: float
    pnl_percent: float
    exit_reason: ExitReason
    entry_snapshot: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if not isinstance(self.entry_snapshot, MappingProxyType):
            object.__setattr__(self, "entry_snapshot", MappingProxyType(dict(self.entry_snapshot)))

    def __reduce__(self):
        # mappingproxy does not pickle; rebuild from a plain dict
        values = [getattr(self, f.name) for f in fields(self)]
        values[-1] = dict(self.entry_snapshot)
        return self.__class__, tuple(values)

    @classmethod
    def from_position(cls, position: Position, exit_time: datetime, exit_price: float,
                      reason: ExitReason) -> 'Trade':
        pnl = position.unrealized_pnl(exit_price)
        notional = position.entry_price * position.size
        pnl_percent = pnl / notional * 100 if notional != 0 else 0.0
        return cls(
            entry_time=position.entry_time,
            entry_price=position.entry_price,
            exit_time=exit_time,
            exit_price=exit_price,
            direction=position.direction,
            size=position.size,
            pnl=pnl,
            pnl_percent=pnl_percent,
            exit_reason=reason,
            entry_snapshot=MappingProxyType(dict(position.entry_snapshot)),
        )

    def to_dict(self) -> Dict[str, Any]:
        base_dict = {
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "direction": self.direction.value,
            "size": self.size,
            "pnl": self.pnl,
            "pnl_pct": self.pnl_percent,
            "exit_reason": self.exit_reason.value,
        }
        # Flatten Entry Snapshot
        for k, v in self.entry_snapshot.items():
            base_dict[f"entry_{k}"] = v
        return base_dict


@dataclass(frozen=True)
class EntrySignal:
    index: int
    timestamp: datetime
    price: float
    direction: Direction


@dataclass
class BacktestResult:
    trades: List[Trade]
    total_pnl: float
    win_count: int
    loss_count: int
    total_trades: int
    win_rate: float
    statistics: Any = None  # analytics.metrics.TradeStatistics

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_dict() for t in self.trades])

    def ledger_key(self) -> Tuple:
        """Hashable view of the ledger, used to compare runs."""
        return tuple(
            (t.entry_time, t.entry_price, t.exit_time, t.exit_price, t.direction.value,
             t.size, t.pnl, t.exit_reason.value)
            for t in self.trades
        )
