import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import pandas as pd

from strategy_sim.analytics.metrics import MetricsCalculator
from strategy_sim.config import SimulationConfig
from strategy_sim.core.schema import (
    Bar, BacktestResult, Direction, EngineState, ExitReason, Position, Trade,
)
from strategy_sim.core.series import BarSeries, DataError
from strategy_sim.strategy.conditions import NO_OPINION, Decision, get_condition
from strategy_sim.strategy.indicators import IndicatorCalculator, IndicatorSeries
from strategy_sim.strategy.signals import determine_entry_signal
from strategy_sim.strategy.snapshot import IndicatorSnapshot, SnapshotBuilder, last

logger = logging.getLogger("strategy_sim.core.engine")

ENTRY_SIZE = 1.0


class EngineStateError(RuntimeError):
    """The position book was asked to make a transition the state machine forbids."""


ALLOWED_TRANSITIONS = {
    EngineState.FLAT: {EngineState.FLAT, EngineState.LONG_OPEN, EngineState.SHORT_OPEN},
    EngineState.LONG_OPEN: {EngineState.LONG_OPEN, EngineState.FLAT, EngineState.BOTH_OPEN},
    EngineState.SHORT_OPEN: {EngineState.SHORT_OPEN, EngineState.FLAT, EngineState.BOTH_OPEN},
    EngineState.BOTH_OPEN: {EngineState.BOTH_OPEN, EngineState.FLAT},
}


def _state_for(long: Optional[Position], short: Optional[Position]) -> EngineState:
    if long is not None and short is not None:
        return EngineState.BOTH_OPEN
    if long is not None:
        return EngineState.LONG_OPEN
    if short is not None:
        return EngineState.SHORT_OPEN
    return EngineState.FLAT


@dataclass
class PositionBook:
    """
    Open legs plus the state they put the engine in. The state is only ever
    changed through _transition, which validates it against ALLOWED_TRANSITIONS.
    """
    hedge_enabled: bool = False
    state: EngineState = EngineState.FLAT
    long: Optional[Position] = None
    short: Optional[Position] = None

    def _transition(self, long: Optional[Position], short: Optional[Position]):
        new_state = _state_for(long, short)
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise EngineStateError(f"Illegal transition {self.state.value} -> {new_state.value}")
        if new_state is EngineState.BOTH_OPEN and not self.hedge_enabled:
            raise EngineStateError("BothOpen requires hedge mode")
        self.long, self.short, self.state = long, short, new_state

    def get(self, direction: Direction) -> Optional[Position]:
        return self.long if direction is Direction.LONG else self.short

    @property
    def single(self) -> Optional[Position]:
        if self.state is EngineState.LONG_OPEN:
            return self.long
        if self.state is EngineState.SHORT_OPEN:
            return self.short
        return None

    def legs(self) -> List[Position]:
        return [p for p in (self.long, self.short) if p is not None]

    def open(self, position: Position):
        if self.get(position.direction) is not None:
            raise EngineStateError(f"{position.direction.value} leg is already open")
        if position.direction is Direction.LONG:
            self._transition(position, self.short)
        else:
            self._transition(self.long, position)

    def close_all(self) -> List[Position]:
        closed = self.legs()
        self._transition(None, None)
        return closed

    def close(self, direction: Direction) -> Position:
        position = self.get(direction)
        if position is None:
            raise EngineStateError(f"no {direction.value} leg to close")
        if direction is Direction.LONG:
            self._transition(None, self.short)
        else:
            self._transition(self.long, None)
        return position


class BacktestEngine:
    """
    Replays a bar series through the configured long/short conditions.

    Per bar: hedge handling, combined exit of a hedged pair, stop-loss /
    take-profit / signal exit of a single position, minimum-size cleanup,
    then entry when flat and past warm-up. In hedge mode an entry signal for
    the empty side opens a second leg next to the open one.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        # Unknown names fail here, before any bar is replayed
        self.long_condition = get_condition(config.long_condition, Direction.LONG)
        self.short_condition = get_condition(config.short_condition, Direction.SHORT)

    def run(self, data: Union[BarSeries, pd.DataFrame],
            indicators: Optional[IndicatorSeries] = None) -> BacktestResult:
        """
        The Main Event Loop. Processes data bar by bar.
        """
        if isinstance(data, BarSeries):
            series = data
        else:
            try:
                series = BarSeries.from_dataframe(data)
            except DataError as e:
                logger.warning(f"[BACKTEST SKIPPED] Unusable bar data: {e}")
                return self._result([])

        cfg = self.config
        trades: List[Trade] = []
        book = PositionBook(hedge_enabled=cfg.hedge_mode)

        logger.info(f"[BACKTEST START] Long: {cfg.long_condition} | Short: {cfg.short_condition} | "
                    f"Bars: {len(series)} | Hedge: {cfg.hedge_mode}")
        if len(series) <= cfg.warmup_bars:
            logger.warning(f"[BACKTEST] Only {len(series)} bars, warm-up needs more than {cfg.warmup_bars}. No entries possible.")
        if len(series) == 0:
            return self._result(trades)

        if indicators is None:
            indicators = IndicatorCalculator.calculate(series, cfg)
        builder = SnapshotBuilder(series, indicators, cfg)

        for i in range(len(series)):
            bar = series.bar(i)
            snapshot = builder.build(i)
            long_decision = self.long_condition.evaluate(snapshot, cfg)
            short_decision = self.short_condition.evaluate(snapshot, cfg)

            # 1. HEDGE ON FORCE-EXIT
            if cfg.hedge_mode:
                self._handle_hedge(book, long_decision, short_decision, bar, snapshot)

            # 2. HEDGED PAIR
            if book.state is EngineState.BOTH_OPEN:
                combined = book.long.unrealized_pnl(bar.close) + book.short.unrealized_pnl(bar.close)
                if combined > 0:
                    for position in book.close_all():
                        trades.append(self._close(position, bar, bar.close, ExitReason.COMBINED))
                else:
                    self._check_min_size(book, bar, trades)
                continue

            # 3. SINGLE POSITION EXITS
            position = book.single
            if position is not None:
                decision = long_decision if position.direction is Direction.LONG else short_decision
                exit_info = self._exit_for(position, bar, decision, snapshot)
                if exit_info is not None:
                    reason, price = exit_info
                    book.close(position.direction)
                    trades.append(self._close(position, bar, price, reason))

            # 4. MINIMUM SIZE
            self._check_min_size(book, bar, trades)

            # 5. ENTRY (hedge mode also fills the empty side next to an open leg)
            if i >= cfg.warmup_bars and (book.state is EngineState.FLAT or cfg.hedge_mode):
                direction = determine_entry_signal(
                    long_decision if book.long is None else NO_OPINION,
                    short_decision if book.short is None else NO_OPINION,
                    snapshot,
                    cfg,
                )
                if direction is not None:
                    book.open(self._open(direction, i, bar, ENTRY_SIZE, snapshot))

        if cfg.close_open_at_end and book.legs():
            last_bar = series.bar(len(series) - 1)
            for position in book.close_all():
                trades.append(self._close(position, last_bar, last_bar.close, ExitReason.END_OF_DATA))

        result = self._result(trades)
        logger.info(f"[BACKTEST END] Trades: {result.total_trades} | Total P&L: {result.total_pnl:.4f} | "
                    f"Win Rate: {result.win_rate:.2f}% | Open legs left: {len(book.legs())}")
        return result

    def _handle_hedge(self, book: PositionBook, long_decision: Decision, short_decision: Decision,
                      bar: Bar, snapshot: IndicatorSnapshot):
        """
        A force-exit on an open side opens the opposite side instead of closing.
        Already hedged: the opposite leg is resized to half of the signalled leg.
        """
        for direction, decision in ((Direction.LONG, long_decision), (Direction.SHORT, short_decision)):
            if not decision.force_exit:
                continue
            position = book.get(direction)
            if position is None:
                continue

            opposite = book.get(direction.opposite)
            if opposite is None:
                size = position.size * self.config.hedge_size_multiplier
                book.open(self._open(direction.opposite, snapshot.index, bar, size, snapshot))
                logger.info(f"[HEDGE] {bar.timestamp} | {direction.value.upper()} force-exit, "
                            f"opened {direction.opposite.value.upper()} size {size:.4f}")
            else:
                opposite.size = position.size / 2
                logger.info(f"[HEDGE] {bar.timestamp} | Rebalanced {direction.opposite.value.upper()} "
                            f"to size {opposite.size:.4f}")
            # One hedge action per bar, long side first
            return

    def _exit_for(self, position: Position, bar: Bar, decision: Decision,
                  snapshot: IndicatorSnapshot) -> Optional[Tuple[ExitReason, float]]:
        """Stop-loss, then take-profit, then signal. First match wins."""
        if position.direction is Direction.LONG:
            stop_hit = bar.low <= position.stop_loss
            target_hit = bar.high >= position.take_profit
        else:
            stop_hit = bar.high >= position.stop_loss
            target_hit = bar.low <= position.take_profit

        if stop_hit:
            return ExitReason.STOP_LOSS, position.stop_loss

        hold = self._should_hold(position, snapshot)
        if target_hit and not hold:
            return ExitReason.TAKE_PROFIT, position.take_profit
        if decision.force_exit and not hold:
            return ExitReason.SIGNAL, bar.close
        return None

    def _should_hold(self, position: Position, snapshot: IndicatorSnapshot) -> bool:
        """Directional policy: keep riding while the favourable DI dominates."""
        if self.config.exit_hold_policy != "directional":
            return False
        plus_di = last(snapshot.plus_di)
        minus_di = last(snapshot.minus_di)
        if position.direction is Direction.LONG:
            return plus_di > minus_di
        return minus_di > plus_di

    def _check_min_size(self, book: PositionBook, bar: Bar, trades: List[Trade]):
        if any(p.size < self.config.min_position_size for p in book.legs()):
            for position in book.close_all():
                trades.append(self._close(position, bar, bar.close, ExitReason.MIN_SIZE))

    def _open(self, direction: Direction, index: int, bar: Bar, size: float,
              snapshot: IndicatorSnapshot) -> Position:
        price = bar.close
        if direction is Direction.LONG:
            take_profit = price * (1 + self.config.tp_rate)
            stop_loss = price * (1 - self.config.sl_rate)
        else:
            take_profit = price * (1 - self.config.tp_rate)
            stop_loss = price * (1 + self.config.sl_rate)

        position = Position(
            direction=direction,
            entry_index=index,
            entry_time=bar.timestamp,
            entry_price=price,
            size=size,
            take_profit=take_profit,
            stop_loss=stop_loss,
            entry_snapshot=snapshot.to_dict(),
        )
        logger.info(f"+++ [OPEN] {bar.timestamp} | {direction.value.upper()} @ {price:.4f} | "
                    f"Size: {size:.4f} | TP: {take_profit:.4f} | SL: {stop_loss:.4f}")
        return position

    def _close(self, position: Position, bar: Bar, price: float, reason: ExitReason) -> Trade:
        trade = Trade.from_position(position, bar.timestamp, price, reason)
        logger.info(f"--- [CLOSED] {bar.timestamp} | {position.direction.value.upper()} @ {price:.4f} | "
                    f"PnL: {trade.pnl:.4f} ({trade.pnl_percent:.2f}%) | Reason: {reason.value}")
        return trade

    @staticmethod
    def _result(trades: List[Trade]) -> BacktestResult:
        stats = MetricsCalculator.calculate_statistics(trades)
        return BacktestResult(
            trades=trades,
            total_pnl=stats.total_pnl,
            win_count=stats.win_count,
            loss_count=stats.loss_count,
            total_trades=stats.total_trades,
            win_rate=stats.win_rate,
            statistics=stats,
        )


def run_backtest(data: Union[BarSeries, pd.DataFrame], config: SimulationConfig) -> BacktestResult:
    """One complete run: a pure function of (bars, config)."""
    return BacktestEngine(config).run(data)
