"""
Portfolio risk simulation engine.

Turns positions, a correlation structure and per-asset return assumptions
into a statistical forecast of portfolio outcomes and ranked reallocation
guidance.

Components, leaves first:
- matrix:       Cholesky factorization and correlation repair
- correlation:  sample/EWMA estimators and Ledoit-Wolf shrinkage
- variates:     Gaussian, per-asset t, multivariate t and skew models
- qmc:          Sobol/Halton sequences and the inverse-CDF bridge
- simulation:   parallel Monte Carlo orchestration and statistics
- risk:         risk decomposition and the swap optimizer
"""

from portfolio_risk.config import FatTailMethod, SimulationConfig, get_simulation_config
from portfolio_risk.errors import PortfolioRiskError, SimulationError, OptimizationError
from portfolio_risk.variates import AssetDistributionParams, PercentileAnchors
from portfolio_risk.simulation import (
    MonteCarloSimulator,
    PortfolioInputs,
    Position,
    SimulationResult,
)
from portfolio_risk.risk import OptimizationResult, SwapOptimizer

__version__ = "0.1.0"

__all__ = [
    "FatTailMethod",
    "SimulationConfig",
    "get_simulation_config",
    "PortfolioRiskError",
    "SimulationError",
    "OptimizationError",
    "AssetDistributionParams",
    "PercentileAnchors",
    "MonteCarloSimulator",
    "PortfolioInputs",
    "Position",
    "SimulationResult",
    "OptimizationResult",
    "SwapOptimizer",
]
