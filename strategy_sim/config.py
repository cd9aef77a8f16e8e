"""
SIMULATION CONFIGURATION
========================

Immutable parameters for a single backtest run. Validated on construction so
that a bad value stops the run before the first bar is replayed.
"""

import numbers
from dataclasses import dataclass, field, fields, asdict, replace as dc_replace
from typing import Any, Dict, Optional

LONG = "long"
SHORT = "short"

CONDITION_NAMES = ("default", "macd", "bbw", "combined", "inverse", "dmi", "volume_cluster")
HOLD_POLICIES = ("none", "directional")

# Period of the true-range series used by the regime classifier
ATR_PERIOD = 14


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used for a run."""


def _is_period(value) -> bool:
    """Positive whole number. numpy integers pass, booleans do not."""
    return isinstance(value, numbers.Integral) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class VolumeClusterConfig:
    """
    Volume profile settings. value_area_pct is validated and carried in
    to_dict, but no condition reads it yet; it is reserved for a value-area
    level set next to the POC.
    """
    lookback_period: int = 240
    bin_size_pct: float = 0.05       # % of reference price
    value_area_pct: float = 70.0
    poc_proximity: float = 0.2       # % band around a level
    min_poc_distance: float = 0.3    # % of reference price between levels

    def validate(self):
        if not _is_period(self.lookback_period):
            raise ConfigError(f"volume_cluster.lookback_period must be positive, got {self.lookback_period}")
        if self.bin_size_pct < 0:
            raise ConfigError(f"volume_cluster.bin_size_pct must be >= 0, got {self.bin_size_pct}")
        if not 0 < self.value_area_pct <= 100:
            raise ConfigError(f"volume_cluster.value_area_pct must be in (0, 100], got {self.value_area_pct}")
        if self.poc_proximity < 0:
            raise ConfigError(f"volume_cluster.poc_proximity must be >= 0, got {self.poc_proximity}")
        if self.min_poc_distance < 0:
            raise ConfigError(f"volume_cluster.min_poc_distance must be >= 0, got {self.min_poc_distance}")


@dataclass(frozen=True)
class BoxFilterConfig:
    enabled: bool = False
    period: int = 20
    min_range_pct: float = 0.01      # fraction of the lowest low

    def validate(self):
        if not _is_period(self.period):
            raise ConfigError(f"box_filter.period must be a positive integer, got {self.period!r}")
        if self.min_range_pct < 0:
            raise ConfigError(f"box_filter.min_range_pct must be >= 0, got {self.min_range_pct}")


@dataclass(frozen=True)
class SimulationConfig:
    """Full parameter set of a backtest run"""

    # ========== LOOKBACK PERIODS ==========
    vwz_period: int = 14
    ema_period: int = 5
    ema_long_period: Optional[int] = None     # None = ema_period * 10
    adx_period: int = 14
    bbw_period: int = 20
    bbw_normalize_window: int = 50
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    # ========== INDICATOR TUNING ==========
    vwz_min_std: float = 1e-5
    bbw_multiplier: float = 2.0
    bbw_threshold: float = 0.0
    adaptive_min_strength: float = 10.0
    adaptive_max_strength: float = 40.0

    # ========== ENTRY THRESHOLDS ==========
    zscore_threshold: float = 2.0
    adx_threshold: float = 0.0
    adx_upper_threshold: Optional[float] = None
    dmi_dx_threshold: float = 5.0
    z_spike_threshold: float = 1.2
    vwz_spike_threshold: float = 1.0
    bbw_spike_threshold: float = 2.0
    volatility_explosion_ratio: float = 1.5

    # ========== EXITS ==========
    tp_rate: float = 0.01
    sl_rate: float = 0.01
    exit_hold_policy: str = "none"
    close_open_at_end: bool = False

    # ========== CONDITIONS ==========
    long_condition: str = "default"
    short_condition: str = "default"

    # ========== HEDGE MODE ==========
    hedge_mode: bool = False
    hedge_size_multiplier: float = 2.0
    min_position_size: float = 0.1

    volume_cluster: VolumeClusterConfig = field(default_factory=VolumeClusterConfig)
    box_filter: BoxFilterConfig = field(default_factory=BoxFilterConfig)

    def __post_init__(self):
        for name in ("vwz_period", "ema_period", "adx_period", "bbw_period",
                     "bbw_normalize_window", "macd_fast", "macd_slow", "macd_signal"):
            value = getattr(self, name)
            if not _is_period(value):
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if self.ema_long_period is not None and not _is_period(self.ema_long_period):
            raise ConfigError(f"ema_long_period must be a positive integer, got {self.ema_long_period!r}")
        if self.macd_fast >= self.macd_slow:
            raise ConfigError(f"macd_fast ({self.macd_fast}) must be smaller than macd_slow ({self.macd_slow})")

        if self.tp_rate < 0 or self.sl_rate < 0:
            raise ConfigError(f"tp_rate/sl_rate must be >= 0, got {self.tp_rate}/{self.sl_rate}")
        if self.bbw_multiplier <= 0:
            raise ConfigError(f"bbw_multiplier must be positive, got {self.bbw_multiplier}")
        if self.vwz_min_std < 0:
            raise ConfigError(f"vwz_min_std must be >= 0, got {self.vwz_min_std}")
        if self.adaptive_min_strength >= self.adaptive_max_strength:
            raise ConfigError(
                f"adaptive_min_strength ({self.adaptive_min_strength}) must be below "
                f"adaptive_max_strength ({self.adaptive_max_strength})"
            )
        if self.adx_upper_threshold is not None and self.adx_upper_threshold <= self.adx_threshold:
            raise ConfigError(
                f"adx_upper_threshold ({self.adx_upper_threshold}) must exceed adx_threshold ({self.adx_threshold})"
            )
        if self.volatility_explosion_ratio <= 0:
            raise ConfigError(f"volatility_explosion_ratio must be positive, got {self.volatility_explosion_ratio}")

        if self.hedge_size_multiplier <= 0:
            raise ConfigError(f"hedge_size_multiplier must be positive, got {self.hedge_size_multiplier}")
        if self.min_position_size < 0:
            raise ConfigError(f"min_position_size must be >= 0, got {self.min_position_size}")
        if self.exit_hold_policy not in HOLD_POLICIES:
            raise ConfigError(f"unknown exit_hold_policy: {self.exit_hold_policy} (expected one of {HOLD_POLICIES})")

        for side, name in ((LONG, self.long_condition), (SHORT, self.short_condition)):
            if name not in CONDITION_NAMES:
                raise ConfigError(f"no {side} entry condition found for name: {name}")

        self.volume_cluster.validate()
        self.box_filter.validate()

    @property
    def resolved_ema_long_period(self) -> int:
        return self.ema_long_period or self.ema_period * 10

    @property
    def lookbacks(self) -> Dict[str, int]:
        """Index of the first defined value of each indicator family."""
        return {
            "ema_short": self.ema_period - 1,
            "ema_long": self.resolved_ema_long_period - 1,
            "zscore": self.vwz_period - 1,
            "atr": ATR_PERIOD - 1,
            "adx": 2 * self.adx_period - 2,
            "bbw": self.bbw_period - 1,
            "bbw_zscore": self.bbw_period - 1 + self.bbw_normalize_window,
            "regime": 2 * self.bbw_period - 1,
            "macd_hist": self.macd_slow + self.macd_signal - 2,
            "box_range": self.box_filter.period - 1,
        }

    @property
    def warmup_bars(self) -> int:
        """First bar index at which the engine may open a position: every indicator is defined."""
        return max(self.lookbacks.values())

    def replace(self, **overrides) -> 'SimulationConfig':
        """Copy with some fields overridden (validated again)."""
        return dc_replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimulationConfig':
        """
        Build a config from a plain mapping (e.g. parsed JSON or sweep params).
        Nested sections may be given as dicts. Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown configuration keys: {sorted(unknown)}")

        values = dict(data)
        try:
            if isinstance(values.get("volume_cluster"), dict):
                values["volume_cluster"] = VolumeClusterConfig(**values["volume_cluster"])
            if isinstance(values.get("box_filter"), dict):
                values["box_filter"] = BoxFilterConfig(**values["box_filter"])
        except TypeError as e:
            raise ConfigError(f"invalid nested configuration: {e}") from e
        return cls(**values)
