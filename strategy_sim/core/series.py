import logging
from typing import Iterable, Iterator, List

import numpy as np
import pandas as pd

from strategy_sim.core.schema import Bar

logger = logging.getLogger("strategy_sim.core.series")

REQUIRED_COLUMNS = ["Open", "High", "Low", "Close", "Volume"]


class DataError(ValueError):
    """Malformed bar input."""


class BarSeries:
    """
    Immutable, time-ascending OHLCV sequence.

    Backed by a private DataFrame copy (Open/High/Low/Close/Volume, indexed by
    timestamp). Price arrays are exposed read-only so indicator code can work
    on them without copying.
    """

    def __init__(self, df: pd.DataFrame):
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise DataError(f"Bar data is missing columns: {missing}")

        data = df[REQUIRED_COLUMNS].astype(float).copy()
        if not isinstance(data.index, pd.DatetimeIndex):
            data.index = pd.to_datetime(data.index)

        if len(data) > 1 and not data.index.is_monotonic_increasing:
            raise DataError("Bar timestamps must be in ascending order")
        if data.index.has_duplicates:
            raise DataError("Bar timestamps must be unique")
        if data[["Open", "High", "Low", "Close"]].isna().any().any():
            raise DataError("Bar prices contain NaN values")

        self._df = data
        self._arrays = {}
        for col in REQUIRED_COLUMNS:
            arr = data[col].to_numpy(dtype=float, copy=True)
            arr.flags.writeable = False
            self._arrays[col] = arr

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'BarSeries':
        return cls(df)

    @classmethod
    def from_bars(cls, bars: Iterable[Bar]) -> 'BarSeries':
        bars = list(bars)
        df = pd.DataFrame(
            {
                "Open": [b.open for b in bars],
                "High": [b.high for b in bars],
                "Low": [b.low for b in bars],
                "Close": [b.close for b in bars],
                "Volume": [b.volume for b in bars],
            },
            index=pd.DatetimeIndex([b.timestamp for b in bars]),
        )
        return cls(df)

    def __len__(self) -> int:
        return len(self._df)

    def __iter__(self) -> Iterator[Bar]:
        for i in range(len(self)):
            yield self.bar(i)

    def __getitem__(self, i: int) -> Bar:
        return self.bar(i)

    def bar(self, i: int) -> Bar:
        if i < 0:
            i += len(self)
        if not 0 <= i < len(self):
            raise IndexError(f"bar index {i} out of range for series of {len(self)} bars")
        return Bar(
            timestamp=self._df.index[i].to_pydatetime(),
            open=float(self._arrays["Open"][i]),
            high=float(self._arrays["High"][i]),
            low=float(self._arrays["Low"][i]),
            close=float(self._arrays["Close"][i]),
            volume=float(self._arrays["Volume"][i]),
        )

    def bars(self, start: int, stop: int) -> List[Bar]:
        return [self.bar(i) for i in range(max(0, start), min(stop, len(self)))]

    def window(self, start: int, stop: int) -> 'BarSeries':
        """Sub-series of bars [start, stop)."""
        return BarSeries(self._df.iloc[max(0, start):stop])

    def to_dataframe(self) -> pd.DataFrame:
        return self._df.copy()

    @property
    def timestamps(self) -> pd.DatetimeIndex:
        return self._df.index

    @property
    def opens(self) -> np.ndarray:
        return self._arrays["Open"]

    @property
    def highs(self) -> np.ndarray:
        return self._arrays["High"]

    @property
    def lows(self) -> np.ndarray:
        return self._arrays["Low"]

    @property
    def closes(self) -> np.ndarray:
        return self._arrays["Close"]

    @property
    def volumes(self) -> np.ndarray:
        return self._arrays["Volume"]

    def __repr__(self):
        if self._df.empty:
            return "BarSeries(empty)"
        return f"BarSeries({len(self)} bars, {self._df.index[0]} to {self._df.index[-1]})"
