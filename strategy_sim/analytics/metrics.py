from dataclasses import dataclass, asdict
from typing import List, Dict, Any

from strategy_sim.core.schema import Trade, Direction

# Profit factor reported when there are profits and no losses at all
PROFIT_FACTOR_CAP = 999.0


@dataclass(frozen=True)
class TradeStatistics:
    total_trades: int = 0
    win_count: int = 0
    loss_count: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MetricsCalculator:
    @staticmethod
    def calculate_statistics(trades: List[Trade]) -> TradeStatistics:
        """
        Reduces a ledger (in close order) to summary statistics.
        A trade with pnl > 0 is a win, anything else a loss.
        """
        if not trades:
            return TradeStatistics()

        pnls = [t.pnl for t in trades]
        wins = [p for p in pnls if p > 0]
        gross_profit = sum(wins)
        gross_loss = sum(-p for p in pnls if p <= 0)

        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        elif gross_profit > 0:
            profit_factor = PROFIT_FACTOR_CAP
        else:
            profit_factor = 0.0

        # Drawdown on cumulative realised P&L, peak starts at 0
        peak = 0.0
        running = 0.0
        max_drawdown = 0.0
        for p in pnls:
            running += p
            peak = max(peak, running)
            max_drawdown = max(max_drawdown, peak - running)

        return TradeStatistics(
            total_trades=len(pnls),
            win_count=len(wins),
            loss_count=len(pnls) - len(wins),
            win_rate=len(wins) / len(pnls) * 100,
            total_pnl=sum(pnls),
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
        )

    @staticmethod
    def calculate_metrics(trades: List[Trade]) -> Dict[str, Any]:
        """Report dict with overall, per-side and per-exit-reason figures."""
        def get_summary(subset: List[Trade]) -> Dict[str, Any]:
            stats = MetricsCalculator.calculate_statistics(subset)
            return {
                "Total Trades": stats.total_trades,
                "Win Rate %": round(stats.win_rate, 2),
                "Profit Factor": round(stats.profit_factor, 2),
                "Total P&L": round(stats.total_pnl, 4),
            }

        overall = MetricsCalculator.calculate_statistics(trades)
        long_trades = [t for t in trades if t.direction is Direction.LONG]
        short_trades = [t for t in trades if t.direction is Direction.SHORT]

        exit_reasons: Dict[str, int] = {}
        for t in trades:
            exit_reasons[t.exit_reason.value] = exit_reasons.get(t.exit_reason.value, 0) + 1

        avg_pnl_pct = sum(t.pnl_percent for t in trades) / len(trades) if trades else 0.0

        return {
            "Total Trades": overall.total_trades,
            "Wins": overall.win_count,
            "Losses": overall.loss_count,
            "Win Rate %": round(overall.win_rate, 2),
            "Profit Factor": round(overall.profit_factor, 2),
            "Total P&L": round(overall.total_pnl, 4),
            "Avg P&L %": round(avg_pnl_pct, 4),
            "Max Drawdown": round(overall.max_drawdown, 4),
            "Long Performance": get_summary(long_trades),
            "Short Performance": get_summary(short_trades),
            "Exit Reasons": exit_reasons,
        }
