"""
Monte Carlo simulation orchestrator.

Turns portfolio inputs into a ``SimulationResult``:

    1. validate inputs (problems become ``SimulationResult.error``)
    2. derive distribution parameters, repair the correlation, Cholesky
    3. leverage-adjust weights, compute σ_p for the drawdown heuristic
    4. partition the paths over a bounded pool of units and fan out
    5. merge unit outputs, drop non-finite paths, enforce the 90% rule
    6. percentile ladder, dollar ladder, drawdowns, loss probabilities,
       per-asset contribution table

Units run through ``joblib`` on the loky process backend. If the pool
fails, the whole path count is re-run single-threaded (or, with
``fallback_single_threaded=False``, a ``SimulationError`` is raised).
"""

import asyncio
import logging
import math
import os
import time
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed
from numpy.typing import NDArray

from portfolio_risk.config import FatTailMethod, SimulationConfig, get_simulation_config
from portfolio_risk.errors import SimulationError
from portfolio_risk.matrix.kernel import cholesky, repair
from portfolio_risk.risk.decomposition import build_covariance, portfolio_volatility
from portfolio_risk.simulation.inputs import PortfolioInputs
from portfolio_risk.simulation.results import (
    INVALID_PATHS_ERROR,
    DrawdownLadder,
    PercentileLadder,
    SimulationResult,
    contribution_analysis,
    loss_probabilities,
)
from portfolio_risk.simulation.worker import (
    BatchResult,
    WorkItem,
    merge_batches,
    run_work_item,
)
from portfolio_risk.variates.distributions import DEFAULT_SIGMA, stack_params

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

# Below this many paths per unit the pool costs more than it saves
MIN_PATHS_PER_UNIT = 5_000


def resolve_unit_count(
    n_paths: int,
    max_workers: int,
    cpu_count: Optional[int] = None
) -> int:
    """
    Number of parallel units for a run.

    Bounded by the hardware parallelism, the configured cap, and a
    minimum share of paths per unit.
    """
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 4)
    by_size = max(1, n_paths // MIN_PATHS_PER_UNIT)
    return max(1, min(max_workers, cpus, by_size))


def partition_paths(n_paths: int, n_units: int) -> List[Tuple[int, int]]:
    """
    Split ``n_paths`` into contiguous (start, count) ranges.

    Each unit gets ceil(n_paths / n_units) paths except the last; empty
    ranges are dropped.
    """
    if n_units <= 0:
        raise ValueError(f"n_units must be positive. Got {n_units}")
    per_unit = math.ceil(n_paths / n_units)
    ranges = []
    for unit in range(n_units):
        start = unit * per_unit
        count = min(per_unit, n_paths - start)
        if count > 0:
            ranges.append((start, count))
    return ranges


class MonteCarloSimulator:
    """
    Parallel Monte Carlo / quasi-Monte Carlo portfolio simulator.

    Attributes
    ----------
    config : SimulationConfig
        Run settings
    progress : callable, optional
        Called with (phase label, percent) as the run advances
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        progress: Optional[ProgressCallback] = None
    ) -> None:
        self.config = (config if config is not None else get_simulation_config()).validate()
        self.progress = progress

    def _report(self, phase: str, percent: int) -> None:
        if self.progress is not None:
            self.progress(phase, percent)

    def build_work_items(
        self,
        cholesky_factor: NDArray[np.float64],
        params: Sequence,
        adjusted_weights: NDArray[np.float64],
        cash_weight: float,
        cash_rate: float,
        annual_vol: float,
        ranges: Sequence[Tuple[int, int]]
    ) -> List[WorkItem]:
        """One frozen work item per path range, each with its own seed."""
        cfg = self.config
        seeds = np.random.SeedSequence(cfg.seed).spawn(len(ranges))
        method = FatTailMethod.parse(cfg.fat_tail_method)
        return [
            WorkItem(
                unit=unit,
                start_path=start,
                n_paths=count,
                cholesky_factor=cholesky_factor.copy(),
                params=tuple(params),
                adjusted_weights=adjusted_weights.copy(),
                cash_weight=cash_weight,
                cash_rate=cash_rate,
                annual_vol=annual_vol,
                fat_tail_method=method,
                seed=seed,
                use_qmc=cfg.use_qmc,
                qmc_sequence=cfg.qmc_sequence,
                qmc_offset=cfg.qmc_skip + start,
            )
            for unit, ((start, count), seed) in enumerate(zip(ranges, seeds))
        ]

    def _execute_units(self, items: Sequence[WorkItem]) -> List[BatchResult]:
        """Run work items on the process pool; a single item runs in-process."""
        if len(items) == 1:
            return [run_work_item(items[0])]
        return Parallel(
            n_jobs=len(items),
            backend="loky",
            timeout=self.config.unit_timeout,
        )(delayed(run_work_item)(item) for item in items)

    def _run_units(self, items: List[WorkItem]) -> Tuple[List[BatchResult], bool]:
        """
        Execute units, falling back to one in-process unit on failure.

        Returns
        -------
        batches : List[BatchResult]
        used_fallback : bool
        """
        try:
            return self._execute_units(items), False
        except Exception as exc:
            if not self.config.fallback_single_threaded:
                raise SimulationError(f"Parallel simulation failed: {exc}") from exc
            logger.warning(
                "Parallel simulation failed (%s); re-running %d paths single-threaded",
                exc, sum(item.n_paths for item in items),
            )

        first = items[0]
        single = WorkItem(
            unit=0,
            start_path=0,
            n_paths=sum(item.n_paths for item in items),
            cholesky_factor=first.cholesky_factor,
            params=first.params,
            adjusted_weights=first.adjusted_weights,
            cash_weight=first.cash_weight,
            cash_rate=first.cash_rate,
            annual_vol=first.annual_vol,
            fat_tail_method=first.fat_tail_method,
            seed=np.random.SeedSequence(self.config.seed),
            use_qmc=first.use_qmc,
            qmc_sequence=first.qmc_sequence,
            qmc_offset=self.config.qmc_skip,
        )
        return [run_work_item(single)], True

    def run(self, inputs: PortfolioInputs) -> SimulationResult:
        """
        Simulate one-year portfolio outcomes.

        Parameters
        ----------
        inputs : PortfolioInputs
            Positions, weights, correlation and value/cash

        Returns
        -------
        SimulationResult
            With ``error`` set for invalid inputs or when more than 10% of
            paths are non-finite.

        Raises
        ------
        SimulationError
            If a unit fails and single-threaded fallback is disabled.
        """
        cfg = self.config
        method = FatTailMethod.parse(cfg.fat_tail_method)
        meta = dict(use_qmc=cfg.use_qmc, fat_tail_method=method.value)

        error = inputs.validation_error()
        if error is not None:
            logger.info("Simulation not started: %s", error)
            return SimulationResult.failed(error, **meta)

        start_time = time.perf_counter()
        self._report("Initializing...", 0)

        params = inputs.distribution_params()
        cols = stack_params(params)
        mu, sigma = cols["mu"], cols["sigma"]

        self._report("Computing Cholesky decomposition...", 10)
        correlation = repair(inputs.correlation)
        L = cholesky(correlation)

        adjusted = inputs.adjusted_weights
        cash_weight = inputs.cash_weight
        cash_rate = inputs.cash_rate or 0.0

        covariance = build_covariance(correlation, sigma)
        annual_vol = portfolio_volatility(inputs.raw_weights, covariance)
        if not math.isfinite(annual_vol):
            logger.warning("Non-finite portfolio volatility; using %.2f", DEFAULT_SIGMA)
            annual_vol = DEFAULT_SIGMA

        n_paths = cfg.num_paths
        n_units = resolve_unit_count(n_paths, cfg.max_workers)
        ranges = partition_paths(n_paths, n_units)
        items = self.build_work_items(
            L, params, adjusted, cash_weight, cash_rate, annual_vol, ranges
        )

        logger.info(
            "Running %d paths across %d units%s",
            n_paths, len(items), " (QMC)" if cfg.use_qmc else "",
        )
        logger.debug("Partition: %s", ranges)
        self._report("Running Monte Carlo paths...", 20)

        batches, used_fallback = self._run_units(items)
        meta.update(n_paths=n_paths, n_units=len(items), used_fallback=used_fallback)

        self._report("Computing statistics...", 80)
        returns, drawdowns = merge_batches(batches)
        valid_returns = returns[np.isfinite(returns)]
        valid_drawdowns = drawdowns[np.isfinite(drawdowns)]

        if len(valid_returns) < n_paths * cfg.min_valid_fraction or len(valid_drawdowns) == 0:
            logger.warning(
                "Only %d of %d paths finite; discarding run", len(valid_returns), n_paths
            )
            return SimulationResult.failed(
                INVALID_PATHS_ERROR, n_valid=len(valid_returns), **meta
            )

        sorted_returns = np.sort(valid_returns)
        sorted_drawdowns = np.sort(valid_drawdowns)

        terminal = PercentileLadder.from_sorted(sorted_returns)
        contributions = contribution_analysis(
            terminal, adjusted, mu, covariance, cash_weight, cash_rate, inputs.tickers
        )

        elapsed = time.perf_counter() - start_time
        logger.info(
            "Simulation complete: %d paths in %.1fs (%d/sec)",
            n_paths, elapsed, int(n_paths / elapsed) if elapsed > 0 else 0,
        )
        self._report("Complete!", 100)

        return SimulationResult(
            terminal_returns=valid_returns,
            max_drawdowns=valid_drawdowns,
            terminal=terminal,
            terminal_dollars=terminal.to_dollars(inputs.portfolio_value),
            drawdown=DrawdownLadder.from_sorted(sorted_drawdowns),
            prob_loss=loss_probabilities(sorted_returns, terminal, cfg.drawdown_threshold),
            contributions=contributions,
            portfolio_value=inputs.portfolio_value,
            n_valid=len(valid_returns),
            simulation_time=elapsed,
            **meta,
        )

    async def run_async(self, inputs: PortfolioInputs) -> SimulationResult:
        """``run`` as a single awaitable, executed off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.run, inputs)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MonteCarloSimulator(num_paths={self.config.num_paths}, "
            f"use_qmc={self.config.use_qmc}, "
            f"fat_tail_method={FatTailMethod.parse(self.config.fat_tail_method).value})"
        )
