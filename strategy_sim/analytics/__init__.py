from .metrics import MetricsCalculator, TradeStatistics
