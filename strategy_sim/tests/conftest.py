"""
PYTEST CONFIGURATION & FIXTURES
===============================

Shared bar builders and a snapshot factory for the condition tests.
"""

from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from strategy_sim.core.schema import Bar, MarketState, RegimeState
from strategy_sim.core.series import BarSeries
from strategy_sim.strategy.snapshot import IndicatorSnapshot, WINDOW_FIELDS
from strategy_sim.strategy.volume_profile import VolumeProfile


def pytest_configure(config):
    config.addinivalue_line("markers", "indicators: indicator pipeline tests")
    config.addinivalue_line("markers", "conditions: entry/exit condition tests")
    config.addinivalue_line("markers", "engine: backtest engine tests")
    config.addinivalue_line("markers", "slow: tests that start worker processes")


def make_frame(closes, spread=0.5, volume=1000.0, opens=None, start="2024-01-01", freq="h") -> pd.DataFrame:
    """OHLCV frame around a close path. High/Low sit `spread` away from max/min(open, close)."""
    closes = np.asarray(closes, dtype=float)
    if opens is None:
        opens = np.concatenate([[closes[0]], closes[:-1]])
    opens = np.asarray(opens, dtype=float)
    volumes = np.broadcast_to(np.asarray(volume, dtype=float), closes.shape)
    return pd.DataFrame(
        {
            "Open": opens,
            "High": np.maximum(opens, closes) + spread,
            "Low": np.minimum(opens, closes) - spread,
            "Close": closes,
            "Volume": volumes,
        },
        index=pd.date_range(start, periods=len(closes), freq=freq),
    )


def first_defined(values) -> int:
    """Index of the first non-NaN value, -1 when there is none."""
    defined = np.flatnonzero(~np.isnan(np.asarray(values, dtype=float)))
    return int(defined[0]) if len(defined) else -1


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def rising_series():
    """Strictly rising closes, 1.0 per bar."""
    return BarSeries(make_frame(100.0 + np.arange(150)))


@pytest.fixture
def flat_series():
    df = make_frame(np.full(50, 100.0), spread=0.0)
    return BarSeries(df)


@pytest.fixture
def random_walk_series():
    rng = np.random.default_rng(42)
    closes = 100.0 + np.cumsum(rng.normal(0, 0.6, 400))
    volumes = rng.integers(500, 5000, 400).astype(float)
    return BarSeries(make_frame(closes, spread=0.4, volume=volumes))


def make_snapshot(index=5, close=100.0, bars=None, regime=None, profile=None, ranging=False, **windows):
    """Snapshot with every window undefined unless given."""
    values = {name: np.array([np.nan, np.nan, np.nan]) for name in WINDOW_FIELDS}
    for name, arr in windows.items():
        values[name] = np.asarray(arr, dtype=float)
    if bars is None:
        ts = datetime(2024, 1, 1)
        bars = (Bar(ts, close, close + 1, close - 1, close, 1000.0),
                Bar(ts, close, close + 1, close - 1, close, 1000.0))
    return IndicatorSnapshot(
        index=index,
        timestamp=bars[-1].timestamp,
        close=close,
        ranging=ranging,
        regime=regime or RegimeState(MarketState.NEUTRAL),
        volume_profile=profile or VolumeProfile.EMPTY,
        bars=tuple(bars),
        **values,
    )


@pytest.fixture
def snapshot_factory():
    return make_snapshot
