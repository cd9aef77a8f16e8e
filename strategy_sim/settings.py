"""
GLOBAL SETTINGS
===============
Environment driven defaults. Values come from the process environment or a
local .env file; anything not set falls back to SimulationConfig defaults.
"""

import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from strategy_sim.config import SimulationConfig, ConfigError

# Load environment variables
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
LOG_DIR = Path(os.getenv("SIM_LOG_DIR", BASE_DIR / "logs"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Logging Configuration (consumed by core.logger.setup_logging)
LOGGING_CONFIG = {
    "logging": {
        "console": {
            "enabled": _env_bool("SIM_LOG_CONSOLE", True),
            "level": os.getenv("SIM_LOG_LEVEL", "INFO"),
        },
        "file": {
            "enabled": _env_bool("SIM_LOG_FILE", False),
            "level": "DEBUG",
            "path": str(LOG_DIR / "backtest_{timestamp}.log"),
        },
    }
}

# Env variable -> (config field, type)
_ENV_FIELDS = {
    "SIM_VWZ_PERIOD": ("vwz_period", int),
    "SIM_EMA_PERIOD": ("ema_period", int),
    "SIM_ADX_PERIOD": ("adx_period", int),
    "SIM_ADX_THRESHOLD": ("adx_threshold", float),
    "SIM_ADX_UPPER_THRESHOLD": ("adx_upper_threshold", float),
    "SIM_ZSCORE_THRESHOLD": ("zscore_threshold", float),
    "SIM_TP_RATE": ("tp_rate", float),
    "SIM_SL_RATE": ("sl_rate", float),
    "SIM_BBW_PERIOD": ("bbw_period", int),
    "SIM_BBW_MULTIPLIER": ("bbw_multiplier", float),
    "SIM_LONG_CONDITION": ("long_condition", str),
    "SIM_SHORT_CONDITION": ("short_condition", str),
    "SIM_HEDGE_SIZE_MULTIPLIER": ("hedge_size_multiplier", float),
    "SIM_MIN_POSITION_SIZE": ("min_position_size", float),
    "SIM_EXIT_HOLD_POLICY": ("exit_hold_policy", str),
}


def simulation_defaults() -> Dict[str, Any]:
    """Reads SIM_* variables into a dict of SimulationConfig overrides."""
    defaults: Dict[str, Any] = {}
    for env_name, (field_name, cast) in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            defaults[field_name] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"{env_name}={raw!r} is not a valid {cast.__name__}") from e

    if os.getenv("SIM_HEDGE_MODE") is not None:
        defaults["hedge_mode"] = _env_bool("SIM_HEDGE_MODE", False)
    return defaults


SIMULATION_DEFAULTS = simulation_defaults()


def load_config(**overrides) -> SimulationConfig:
    """Environment defaults merged with explicit overrides (overrides win)."""
    values = dict(SIMULATION_DEFAULTS)
    values.update(overrides)
    return SimulationConfig.from_dict(values)
