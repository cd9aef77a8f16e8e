import logging
import random

import pytest

from strategy_sim.config import ConfigError, SimulationConfig
from strategy_sim.optimizer import (
    chunked_iterable,
    expand_grid,
    generate_params,
    run_batch_backtests,
    run_sweep,
)

SPACE = {
    "tp_rate": {"type": "range", "min": 0.005, "max": 0.015, "step": 0.005},
    "vwz_period": {"type": "range", "min": 10, "max": 12},
    "long_condition": {"type": "choice", "values": ["default", "macd"]},
    "hedge_mode": {"type": "fixed", "value": False},
}


@pytest.fixture(autouse=True)
def restore_logger_levels():
    yield
    for name in ("strategy_sim.core.engine", "strategy_sim.strategy"):
        logging.getLogger(name).setLevel(logging.NOTSET)


class TestParameterSpace:

    def test_generate_params_within_space(self):
        rng = random.Random(7)
        for _ in range(20):
            params = generate_params(SPACE, rng)
            assert params["tp_rate"] in (0.005, 0.01, 0.015)
            assert 10 <= params["vwz_period"] <= 12
            assert isinstance(params["vwz_period"], int)
            assert params["long_condition"] in ("default", "macd")
            assert params["hedge_mode"] is False

    def test_generate_params_is_seedable(self):
        assert generate_params(SPACE, random.Random(3)) == generate_params(SPACE, random.Random(3))

    def test_expand_grid(self):
        grid = expand_grid(SPACE)
        assert len(grid) == 3 * 3 * 2 * 1
        assert {g["vwz_period"] for g in grid} == {10, 11, 12}
        assert {g["tp_rate"] for g in grid} == {0.005, 0.01, 0.015}

    def test_unknown_spec_type(self):
        with pytest.raises(ConfigError):
            expand_grid({"tp_rate": {"type": "normal"}})
        with pytest.raises(ConfigError):
            generate_params({"tp_rate": {"type": "normal"}})

    def test_float_range_needs_step_for_grid(self):
        with pytest.raises(ConfigError):
            expand_grid({"tp_rate": {"type": "range", "min": 0.01, "max": 0.02}})

    def test_chunked_iterable(self):
        chunks = list(chunked_iterable(list(range(7)), 3))
        assert chunks == [[0, 1, 2], [3, 4, 5], [6]]


class TestBatches:

    def test_batch_skips_invalid_parameter_sets(self, random_walk_series):
        base = SimulationConfig().to_dict()
        params = [{"tp_rate": 0.01}, {"tp_rate": -1.0}, {"long_condition": "macd"}]
        results = run_batch_backtests((random_walk_series, base, params, 10))
        assert [r["run"] for r in results] == [10, 12]
        assert all("Total P&L" in r["metrics"] for r in results)

    def test_empty_sweep(self, random_walk_series):
        assert run_sweep(random_walk_series, SimulationConfig(), []).empty

    @pytest.mark.slow
    def test_sweep_sorted_by_total_pnl(self, random_walk_series):
        grid = expand_grid({
            "tp_rate": {"type": "choice", "values": [0.005, 0.01]},
            "long_condition": {"type": "choice", "values": ["default", "macd"]},
        })
        df = run_sweep(random_walk_series, SimulationConfig(), grid, max_workers=2, batch_size=2, progress=False)
        assert len(df) == 4
        assert sorted(df["run"]) == [0, 1, 2, 3]
        assert list(df["Total P&L"]) == sorted(df["Total P&L"], reverse=True)
        assert {"p_tp_rate", "p_long_condition", "Win Rate %"} <= set(df.columns)
