"""
Risk decomposition and swap optimization.

This module provides:
- Closed-form MCTR, risk contribution, incremental Sharpe, optimality ratio
- Risk-parity weights by fixed-point iteration
- Pairwise swap deltas with simulation validation of the best candidates
"""

from portfolio_risk.risk.decomposition import (
    RiskDecomposition,
    build_covariance,
    portfolio_volatility,
    portfolio_return,
    sharpe_ratio,
    compute_mctr,
    compute_risk_contributions,
    compute_incremental_sharpe,
    compute_optimality_ratios,
    compute_risk_parity_weights,
    risk_decomposition,
)
from portfolio_risk.risk.swaps import (
    MonteCarloStats,
    SwapValidation,
    SwapCandidate,
    SwapMatrix,
    RiskParityComparison,
    OptimizationResult,
    SwapOptimizer,
    swapped_weights,
    compute_swap_matrix,
    top_swaps,
    validate_swaps,
    risk_parity_comparison,
)

__all__ = [
    "RiskDecomposition",
    "build_covariance",
    "portfolio_volatility",
    "portfolio_return",
    "sharpe_ratio",
    "compute_mctr",
    "compute_risk_contributions",
    "compute_incremental_sharpe",
    "compute_optimality_ratios",
    "compute_risk_parity_weights",
    "risk_decomposition",
    "MonteCarloStats",
    "SwapValidation",
    "SwapCandidate",
    "SwapMatrix",
    "RiskParityComparison",
    "OptimizationResult",
    "SwapOptimizer",
    "swapped_weights",
    "compute_swap_matrix",
    "top_swaps",
    "validate_swaps",
    "risk_parity_comparison",
]
