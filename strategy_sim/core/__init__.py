"""
Data model, bar series, logging and the backtest engine.
"""
