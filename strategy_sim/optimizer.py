import itertools
import logging
import os
import random
import time
import concurrent.futures
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pandas as pd
from tqdm import tqdm

from strategy_sim.analytics.metrics import MetricsCalculator
from strategy_sim.config import SimulationConfig, ConfigError
from strategy_sim.core.engine import BacktestEngine
from strategy_sim.core.series import BarSeries

logger = logging.getLogger("strategy_sim.optimizer")

BATCH_SIZE = 50


def _range_values(spec: Dict[str, Any]) -> List[Any]:
    """Every grid point of a range spec. Integer bounds without a step use step 1."""
    lo, hi = spec["min"], spec["max"]
    step = spec.get("step")
    if step is None:
        if isinstance(lo, int) and isinstance(hi, int):
            step = 1
        else:
            raise ConfigError(f"range spec needs a step to be expanded: {spec}")
    if step <= 0:
        raise ConfigError(f"range step must be positive: {spec}")
    steps = int(round((hi - lo) / step))
    values = [lo + k * step for k in range(steps + 1)]
    if isinstance(lo, int) and isinstance(step, int):
        return values
    return [round(v, 6) for v in values]


def generate_params(param_space: Dict[str, Dict[str, Any]], rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Generates a random set of parameters from fixed / range / choice specs."""
    rng = rng or random.Random()
    params = {}
    for key, spec in param_space.items():
        kind = spec.get("type")
        if kind == "fixed":
            params[key] = spec["value"]
        elif kind == "range":
            if isinstance(spec["min"], int) and isinstance(spec["max"], int) and "step" not in spec:
                params[key] = rng.randint(spec["min"], spec["max"])
            elif "step" in spec:
                # Snap to the step grid
                params[key] = rng.choice(_range_values(spec))
            else:
                params[key] = round(rng.uniform(spec["min"], spec["max"]), 6)
        elif kind == "choice":
            params[key] = rng.choice(spec["values"])
        else:
            raise ConfigError(f"unknown parameter spec type for {key}: {kind}")
    return params


def expand_grid(param_space: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Cartesian product of every spec, in key order."""
    keys = list(param_space)
    axes = []
    for key in keys:
        spec = param_space[key]
        kind = spec.get("type")
        if kind == "fixed":
            axes.append([spec["value"]])
        elif kind == "range":
            axes.append(_range_values(spec))
        elif kind == "choice":
            axes.append(list(spec["values"]))
        else:
            raise ConfigError(f"unknown parameter spec type for {key}: {kind}")
    return [dict(zip(keys, combo)) for combo in itertools.product(*axes)]


def chunked_iterable(iterable: Sequence, size: int) -> Iterator[Sequence]:
    """Yield successive n-sized chunks from iterable."""
    for i in range(0, len(iterable), size):
        yield iterable[i:i + size]


def run_batch_backtests(args) -> List[Dict[str, Any]]:
    """
    Runs a batch of parameter sets on one bar series.
    Args:
        series: BarSeries
        base_config: Dict - SimulationConfig.to_dict() of the base run
        params_list: List[Dict] - overrides, one per run
        offset: int - sweep position of the first parameter set
    """
    series, base_config, params_list, offset = args

    # Per-trade lines would flood the progress bar
    logging.getLogger("strategy_sim.core.engine").setLevel(logging.WARNING)
    logging.getLogger("strategy_sim.strategy").setLevel(logging.WARNING)

    results = []
    for run_id, params in enumerate(params_list, start=offset):
        try:
            config_dict = dict(base_config)
            config_dict.update(params)
            config = SimulationConfig.from_dict(config_dict)
            result = BacktestEngine(config).run(series)
        except (ConfigError, ValueError, ArithmeticError) as e:
            logger.error(f"Failed run for {params}: {e}")
            continue

        results.append({
            "run": run_id,
            "params": params,
            "metrics": MetricsCalculator.calculate_metrics(result.trades),
        })
    return results


def _flatten(res: Dict[str, Any]) -> Dict[str, Any]:
    metrics = res["metrics"]
    row = {"run": res["run"]}
    row.update({k: v for k, v in metrics.items() if not isinstance(v, dict)})
    for k, v in res["params"].items():
        row[f"p_{k}"] = v
    return row


def run_sweep(series: BarSeries, base_config: SimulationConfig, param_sets: List[Dict[str, Any]],
              max_workers: Optional[int] = None, batch_size: int = BATCH_SIZE,
              progress: bool = True) -> pd.DataFrame:
    """
    One independent backtest per parameter set, spread over worker processes.
    Returns one row per successful run, best total P&L first.
    """
    if not param_sets:
        return pd.DataFrame()

    base = base_config.to_dict()
    tasks = [(series, base, chunk, n * batch_size)
             for n, chunk in enumerate(chunked_iterable(param_sets, batch_size))]
    if max_workers is None:
        max_workers = max(1, (os.cpu_count() or 1) - 2)

    logger.info(f"--- Starting Sweep ({len(param_sets)} simulations in {len(tasks)} batches, {max_workers} workers) ---")
    start_time = time.time()

    rows = []
    with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(run_batch_backtests, task) for task in tasks]
        for future in tqdm(concurrent.futures.as_completed(futures), total=len(futures),
                           desc="Sweeping (Batches)", unit="batch", disable=not progress):
            for res in future.result():
                rows.append(_flatten(res))

    logger.info(f"Sweep Finished in {time.time() - start_time:.2f}s ({len(rows)}/{len(param_sets)} runs succeeded)")

    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values(["Total P&L", "run"], ascending=[False, True]).reset_index(drop=True)
