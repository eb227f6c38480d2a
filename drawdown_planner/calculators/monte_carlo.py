"""Monte Carlo batches of independently seeded simulation runs.

Run ``i`` of a batch uses seed ``base_seed + i``, so any single path can be
reproduced on its own with :func:`~drawdown_planner.calculators.simulation.run_single_simulation`.
Runs share nothing and can be spread over worker processes.

Example
-------

>>> from drawdown_planner.scenario import Scenario
>>> scenario = Scenario.from_dict({
...     "birth_year": 1960, "start_year": 2025, "end_year": 2027,
...     "accounts": {"tfsa": {"holdings": {"bond": 500000}}},
...     "expenses": [{"type": "Living", "amount": 40000, "start_year": 2025}],
... })
>>> batch = simulate(scenario, runs=5, base_seed=7)
>>> batch.total_runs, batch.success_probability
(5, 1.0)
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

import numpy as np

from .simulation import SimulationStatus, run_single_simulation

if TYPE_CHECKING:
    from ..scenario import Scenario

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 50

ProgressCallback = Callable[[int, int], None]
_RunSummary = Tuple[int, SimulationStatus, Optional[int], List[float]]


class MonteCarloError(RuntimeError):
    """A run failed; the batch was aborted."""

    def __init__(self, run_index: int, message: str):
        self.run_index = run_index
        super().__init__(f"Simulation run {run_index} failed: {message}")


@dataclass
class BatchResult:
    years: List[int]
    final_balances: List[float] = field(default_factory=list)
    depletion_years: List[int] = field(default_factory=list)
    success_count: int = 0
    simulation_paths: List[List[float]] = field(default_factory=list)
    total_runs: int = 0

    @property
    def success_probability(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return self.success_count / self.total_runs

    def path_matrix(self) -> np.ndarray:
        """Runs x years balances; a depleted run stays at zero after its last year."""
        n = len(self.years)
        matrix = np.zeros((len(self.simulation_paths), n))
        for i, path in enumerate(self.simulation_paths):
            matrix[i, : min(n, len(path))] = path[:n]
        return matrix

    def percentiles(self) -> Dict[str, List[float]]:
        if not self.simulation_paths:
            return {"p10": [], "p50": [], "p90": []}
        stacked = self.path_matrix()
        return {
            "p10": np.percentile(stacked, 10, axis=0).tolist(),
            "p50": np.percentile(stacked, 50, axis=0).tolist(),
            "p90": np.percentile(stacked, 90, axis=0).tolist(),
        }


def _run(scenario: "Scenario", run_index: int, base_seed: int) -> _RunSummary:
    result = run_single_simulation(scenario, monte_carlo=True, run_index=run_index, base_seed=base_seed)
    return run_index, result.status, result.depletion_year, result.balance_path()


def _report(progress: Optional[ProgressCallback], completed: int, total: int) -> None:
    if progress is not None and (completed % PROGRESS_INTERVAL == 0 or completed == total):
        progress(completed, total)


def simulate(
    scenario: "Scenario",
    runs: Optional[int] = None,
    base_seed: Optional[int] = None,
    progress: Optional[ProgressCallback] = None,
    workers: int = 1,
) -> BatchResult:
    """Run a Monte Carlo batch.

    Parameters
    ----------
    scenario : Scenario
        Validated scenario; never modified.
    runs : int, optional
        Number of runs; defaults to ``scenario.monte_carlo.runs``.
    base_seed : int, optional
        Seed of run 0; defaults to ``scenario.monte_carlo.base_seed``.
    progress : callable, optional
        Called as ``progress(completed_runs, total_runs)`` every 50 runs and
        after the last one.  Raising from it abandons the batch.
    workers : int
        Worker processes; 1 runs everything in the calling process.

    Returns
    -------
    BatchResult
        Per-run outcomes in run order.

    Raises
    ------
    MonteCarloError
        If any run raises.  No partial batch is returned.
    """
    total = scenario.monte_carlo.runs if runs is None else int(runs)
    seed = scenario.monte_carlo.base_seed if base_seed is None else int(base_seed)
    if total < 1:
        raise ValueError("runs must be at least 1")
    logger.info("Monte Carlo batch of %d runs for %r (seed %d, %d worker(s))", total, scenario.name, seed, workers)

    summaries: List[Optional[_RunSummary]] = [None] * total
    if workers <= 1:
        for i in range(total):
            try:
                summaries[i] = _run(scenario, i, seed)
            except Exception as exc:
                raise MonteCarloError(i, str(exc)) from exc
            _report(progress, i + 1, total)
    else:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(_run, scenario, i, seed): i for i in range(total)}
            completed = 0
            try:
                for future in as_completed(futures):
                    i = futures[future]
                    try:
                        summaries[i] = future.result()
                    except Exception as exc:
                        raise MonteCarloError(i, str(exc)) from exc
                    completed += 1
                    _report(progress, completed, total)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    batch = BatchResult(years=list(range(scenario.start_year, scenario.end_year + 1)), total_runs=total)
    for _, status, depletion_year, path in summaries:
        if path:
            batch.final_balances.append(path[-1])
        batch.simulation_paths.append(path)
        if status is SimulationStatus.SUCCESS:
            batch.success_count += 1
        else:
            batch.depletion_years.append(depletion_year)
    logger.info("Monte Carlo batch finished: %d/%d runs succeeded", batch.success_count, total)
    return batch


__all__ = ["BatchResult", "MonteCarloError", "simulate"]
