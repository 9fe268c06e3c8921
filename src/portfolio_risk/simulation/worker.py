"""
Path generation for one parallel execution unit.

A unit receives an immutable ``WorkItem`` (its path range, seed or QMC
sequence offset, and read-only copies of the model inputs) and returns an
immutable ``BatchResult``. Units share no state, so the same function runs
in-process, in a thread or in a worker process.

Per path:

    r_asset  = model(L, μ, σ, skew, df)                       (VariateGenerator)
    R        = clip(Σ w_i r_asset,i + w_cash r_cash, -1, 10)
    drawdown = clip(σ_p |z| 0.8, 0, 1),   z ~ N(0, 1)

The drawdown is a volatility-scaled heuristic, not a path-wise running
minimum; each path has a single terminal return and no intra-path
trajectory to take a minimum over.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.config import FatTailMethod
from portfolio_risk.qmc.transforms import (
    create_sequence,
    qmc_multivariate_t_inputs,
    qmc_normals,
)
from portfolio_risk.variates.distributions import AssetDistributionParams
from portfolio_risk.variates.generator import MAX_RETURN, MIN_RETURN, VariateGenerator


DRAWDOWN_SCALE = 0.8

# Paths generated per vectorized chunk, bounds peak memory of a unit
CHUNK_SIZE = 50_000


@dataclass(frozen=True)
class WorkItem:
    """
    Immutable description of one unit's share of a run.

    Attributes
    ----------
    unit : int
        Unit index, used to merge results in order
    start_path : int
        Global index of the unit's first path
    n_paths : int
        Number of paths to generate
    seed : np.random.SeedSequence
        Independent stream for pseudo-random draws (and QMC drawdowns)
    qmc_offset : int
        Sequence index of the unit's first QMC point (skip + start_path)
    """

    unit: int
    start_path: int
    n_paths: int
    cholesky_factor: NDArray[np.float64]
    params: Tuple[AssetDistributionParams, ...]
    adjusted_weights: NDArray[np.float64]
    cash_weight: float
    cash_rate: float
    annual_vol: float
    fat_tail_method: FatTailMethod
    seed: np.random.SeedSequence
    use_qmc: bool = False
    qmc_sequence: str = "sobol"
    qmc_offset: int = 0


@dataclass(frozen=True)
class BatchResult:
    """Terminal returns and drawdown estimates of one unit."""

    unit: int
    terminal_returns: NDArray[np.float64]
    max_drawdowns: NDArray[np.float64]


def portfolio_returns(
    asset_returns: NDArray[np.float64],
    adjusted_weights: NDArray[np.float64],
    cash_weight: float,
    cash_rate: float
) -> NDArray[np.float64]:
    """Terminal portfolio return per path, clamped to [-100%, +1000%]."""
    positions = asset_returns @ adjusted_weights
    return np.clip(positions + cash_weight * cash_rate, MIN_RETURN, MAX_RETURN)


def drawdown_estimates(
    annual_vol: float,
    n_paths: int,
    rng: np.random.Generator
) -> NDArray[np.float64]:
    """Heuristic max drawdown per path, σ_p |z| 0.8 clamped to [0, 1]."""
    z = rng.standard_normal(n_paths)
    return np.clip(annual_vol * np.abs(z) * DRAWDOWN_SCALE, 0.0, 1.0)


def run_work_item(item: WorkItem) -> BatchResult:
    """
    Generate all paths of one unit.

    Pseudo-random units draw from ``item.seed``. QMC units take sequence
    points ``qmc_offset`` .. ``qmc_offset + n_paths - 1`` by index, so the
    asset draws of a path do not depend on how the run was partitioned.
    Under the multivariate-t model the sequence carries one extra
    dimension for the shared chi-squared factor.

    Parameters
    ----------
    item : WorkItem
        The unit's share of the run

    Returns
    -------
    BatchResult
    """
    rng = np.random.default_rng(item.seed)
    generator = VariateGenerator(
        item.cholesky_factor, item.params, item.fat_tail_method, rng
    )
    n_assets = generator.n_assets
    weights = np.asarray(item.adjusted_weights, dtype=np.float64)

    terminal = np.empty(item.n_paths, dtype=np.float64)
    drawdowns = np.empty(item.n_paths, dtype=np.float64)

    sequence = None
    if item.use_qmc:
        dims = n_assets + 1 if generator.uses_shared_chi_squared else n_assets
        sequence = create_sequence(item.qmc_sequence, dims)

    for lo in range(0, item.n_paths, CHUNK_SIZE):
        m = min(CHUNK_SIZE, item.n_paths - lo)

        if sequence is None:
            asset_returns = generator.asset_returns(m)
        elif generator.uses_shared_chi_squared:
            z, chi2 = qmc_multivariate_t_inputs(
                sequence, item.qmc_offset + lo, m, n_assets, generator.mvt_df
            )
            asset_returns = generator.returns_from_normals(z, chi2)
        else:
            z = qmc_normals(sequence, item.qmc_offset + lo, m, n_assets)
            asset_returns = generator.returns_from_normals(z)

        terminal[lo:lo + m] = portfolio_returns(
            asset_returns, weights, item.cash_weight, item.cash_rate
        )
        drawdowns[lo:lo + m] = drawdown_estimates(item.annual_vol, m, rng)

    return BatchResult(unit=item.unit, terminal_returns=terminal, max_drawdowns=drawdowns)


def merge_batches(batches) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Concatenate unit outputs in unit order."""
    ordered = sorted(batches, key=lambda b: b.unit)
    if not ordered:
        return np.empty(0), np.empty(0)
    returns = np.concatenate([b.terminal_returns for b in ordered])
    drawdowns = np.concatenate([b.max_drawdowns for b in ordered])
    return returns, drawdowns
