"""
Indicator pipeline, regime, volume profile, candle patterns and the entry/exit conditions.
"""
from .indicators import IndicatorCalculator, IndicatorSeries
from .conditions import EntryCondition, Decision, get_condition, available_conditions
