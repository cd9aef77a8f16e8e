import pickle
import unittest
from datetime import datetime, timedelta

from strategy_sim.analytics.metrics import MetricsCalculator, PROFIT_FACTOR_CAP
from strategy_sim.core.schema import Direction, ExitReason, Position, Trade


def make_trade(pnl, direction=Direction.LONG, reason=ExitReason.TAKE_PROFIT, n=0):
    t0 = datetime(2024, 1, 1) + timedelta(hours=n)
    return Trade(
        entry_time=t0,
        entry_price=100.0,
        exit_time=t0 + timedelta(hours=1),
        exit_price=100.0 + pnl if direction is Direction.LONG else 100.0 - pnl,
        direction=direction,
        size=1.0,
        pnl=pnl,
        pnl_percent=pnl,
        exit_reason=reason,
    )


class TestMetricsCalculator(unittest.TestCase):

    def test_empty_ledger(self):
        stats = MetricsCalculator.calculate_statistics([])
        self.assertEqual(stats.total_trades, 0)
        self.assertEqual(stats.win_rate, 0.0)
        self.assertEqual(stats.profit_factor, 0.0)
        self.assertEqual(stats.max_drawdown, 0.0)

    def test_mixed_ledger(self):
        trades = [make_trade(p, n=i) for i, p in enumerate([10.0, -5.0, 3.0, -8.0])]
        stats = MetricsCalculator.calculate_statistics(trades)
        self.assertEqual(stats.total_trades, 4)
        self.assertEqual(stats.win_count, 2)
        self.assertEqual(stats.loss_count, 2)
        self.assertAlmostEqual(stats.win_rate, 50.0)
        self.assertAlmostEqual(stats.total_pnl, 0.0)
        self.assertAlmostEqual(stats.gross_profit, 13.0)
        self.assertAlmostEqual(stats.gross_loss, 13.0)
        self.assertAlmostEqual(stats.profit_factor, 1.0)
        # Equity 10, 5, 8, 0 against a peak of 10
        self.assertAlmostEqual(stats.max_drawdown, 10.0)

    def test_drawdown_from_zero_peak(self):
        trades = [make_trade(-2.0), make_trade(-3.0, n=1)]
        self.assertAlmostEqual(MetricsCalculator.calculate_statistics(trades).max_drawdown, 5.0)

    def test_only_winners_caps_profit_factor(self):
        trades = [make_trade(1.0), make_trade(2.0, n=1)]
        stats = MetricsCalculator.calculate_statistics(trades)
        self.assertEqual(stats.profit_factor, PROFIT_FACTOR_CAP)
        self.assertEqual(stats.win_rate, 100.0)

    def test_break_even_counts_as_loss(self):
        stats = MetricsCalculator.calculate_statistics([make_trade(0.0)])
        self.assertEqual(stats.loss_count, 1)
        self.assertEqual(stats.profit_factor, 0.0)

    def test_report(self):
        trades = [
            make_trade(4.0, Direction.LONG, ExitReason.TAKE_PROFIT),
            make_trade(-1.0, Direction.LONG, ExitReason.STOP_LOSS, n=1),
            make_trade(2.0, Direction.SHORT, ExitReason.SIGNAL, n=2),
        ]
        report = MetricsCalculator.calculate_metrics(trades)
        self.assertEqual(report["Total Trades"], 3)
        self.assertEqual(report["Wins"], 2)
        self.assertEqual(report["Long Performance"]["Total Trades"], 2)
        self.assertEqual(report["Short Performance"]["Win Rate %"], 100.0)
        self.assertEqual(report["Exit Reasons"], {"TakeProfit": 1, "StopLoss": 1, "Signal": 1})
        self.assertAlmostEqual(report["Total P&L"], 5.0)
        self.assertAlmostEqual(report["Avg P&L %"], 5.0 / 3, places=4)

    def test_statistics_to_dict(self):
        data = MetricsCalculator.calculate_statistics([make_trade(1.0)]).to_dict()
        self.assertEqual(data["total_trades"], 1)
        self.assertIn("max_drawdown", data)


class TestClosedTrade(unittest.TestCase):

    def setUp(self):
        self.position = Position(direction=Direction.SHORT, entry_index=3, entry_time=datetime(2024, 1, 1),
                                 entry_price=100.0, size=2.0, take_profit=99.0, stop_loss=101.0,
                                 entry_snapshot={"zscore": 1.5, "regime": "Neutral"})
        self.trade = Trade.from_position(self.position, datetime(2024, 1, 2), 98.0, ExitReason.SIGNAL)

    def test_entry_snapshot_is_read_only(self):
        with self.assertRaises(TypeError):
            self.trade.entry_snapshot["zscore"] = 0.0
        self.position.entry_snapshot["zscore"] = 9.0
        self.assertEqual(self.trade.entry_snapshot["zscore"], 1.5)

    def test_plain_dict_snapshot_is_wrapped(self):
        trade = Trade(datetime(2024, 1, 1), 100.0, datetime(2024, 1, 2), 101.0, Direction.LONG,
                      1.0, 1.0, 1.0, ExitReason.TAKE_PROFIT, {"adx": 30.0})
        with self.assertRaises(TypeError):
            trade.entry_snapshot["adx"] = 0.0

    def test_signed_pnl_and_pickle(self):
        self.assertAlmostEqual(self.trade.pnl, 4.0)
        self.assertAlmostEqual(self.trade.pnl_percent, 2.0)
        restored = pickle.loads(pickle.dumps(self.trade))
        self.assertEqual((restored.exit_price, restored.pnl, restored.exit_reason),
                         (self.trade.exit_price, self.trade.pnl, self.trade.exit_reason))
        self.assertEqual(dict(restored.entry_snapshot), dict(self.trade.entry_snapshot))
        self.assertEqual(restored.to_dict()["entry_zscore"], 1.5)


if __name__ == '__main__':
    unittest.main()
