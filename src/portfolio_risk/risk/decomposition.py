"""
Closed-form portfolio risk decomposition.

For weights w and covariance Σ:

    σ_p       = sqrt(wᵀ Σ w)
    MCTR_i    = (Σ w)_i / σ_p                 ∂σ_p / ∂w_i
    RC_i      = w_i MCTR_i / σ_p              Σ_i RC_i = 1
    iSharpe_i = S_i - ρ(i, p) S_p             S_i = (μ_i - r_f) / σ_i
    opt_i     = (μ_i - r_f) / MCTR_i          equal across assets at the optimum

All operations are O(N²).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.matrix.kernel import correlation_to_covariance

logger = logging.getLogger(__name__)


# |MCTR| below which the optimality ratio is reported as 0
MIN_MCTR = 1e-4


def build_covariance(
    correlation: NDArray[np.float64],
    sigma: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Covariance from a correlation matrix and volatilities; non-finite entries -> 0."""
    C = np.asarray(correlation, dtype=np.float64)
    C = np.where(np.isfinite(C), C, 0.0)
    np.fill_diagonal(C, 1.0)
    return correlation_to_covariance(C, np.asarray(sigma, dtype=np.float64))


def portfolio_volatility(
    weights: NDArray[np.float64],
    covariance: NDArray[np.float64]
) -> float:
    w = np.asarray(weights, dtype=np.float64)
    variance = float(w @ np.asarray(covariance, dtype=np.float64) @ w)
    return float(np.sqrt(max(0.0, variance)))


def portfolio_return(
    weights: NDArray[np.float64],
    mu: NDArray[np.float64],
    cash_contribution: float = 0.0
) -> float:
    """Expected return of the positions plus the cash contribution."""
    return float(np.asarray(weights, dtype=np.float64) @ np.asarray(mu, dtype=np.float64)) + cash_contribution


def sharpe_ratio(expected_return: float, volatility: float, risk_free_rate: float) -> float:
    """Sharpe ratio; 0 when volatility is not positive."""
    if volatility <= 0:
        return 0.0
    return (expected_return - risk_free_rate) / volatility


def compute_mctr(
    weights: NDArray[np.float64],
    covariance: NDArray[np.float64],
    portfolio_vol: Optional[float] = None
) -> NDArray[np.float64]:
    """
    Marginal contribution to risk of each asset.

    Parameters
    ----------
    weights : NDArray[np.float64]
        Portfolio weights, shape (N,)
    covariance : NDArray[np.float64]
        Covariance matrix, shape (N, N)
    portfolio_vol : float, optional
        σ_p if already known

    Returns
    -------
    NDArray[np.float64]
        MCTR, shape (N,); zeros when σ_p <= 0
    """
    w = np.asarray(weights, dtype=np.float64)
    S = np.asarray(covariance, dtype=np.float64)
    vol = portfolio_volatility(w, S) if portfolio_vol is None else portfolio_vol
    if vol <= 0:
        return np.zeros_like(w)
    return (S @ w) / vol


def compute_risk_contributions(
    weights: NDArray[np.float64],
    mctr: NDArray[np.float64],
    portfolio_vol: float
) -> NDArray[np.float64]:
    """Fraction of total risk from each asset, w_i MCTR_i / σ_p."""
    w = np.asarray(weights, dtype=np.float64)
    if portfolio_vol <= 0:
        return np.zeros_like(w)
    return w * np.asarray(mctr, dtype=np.float64) / portfolio_vol


def compute_incremental_sharpe(
    weights: NDArray[np.float64],
    mu: NDArray[np.float64],
    sigma: NDArray[np.float64],
    covariance: NDArray[np.float64],
    risk_free_rate: float,
    cash_contribution: float = 0.0
) -> NDArray[np.float64]:
    """
    Incremental Sharpe ratio of each asset.

    Positive values mean adding a little more of the asset, funded at the
    risk-free rate, raises the portfolio Sharpe ratio.
    """
    w = np.asarray(weights, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    sigma = np.asarray(sigma, dtype=np.float64)
    S = np.asarray(covariance, dtype=np.float64)

    vol = portfolio_volatility(w, S)
    port_sharpe = sharpe_ratio(portfolio_return(w, mu, cash_contribution), vol, risk_free_rate)

    safe_sigma = np.where(sigma > 0, sigma, 1.0)
    asset_sharpe = np.where(sigma > 0, (mu - risk_free_rate) / safe_sigma, 0.0)

    cov_with_portfolio = S @ w
    if vol > 0:
        corr_with_portfolio = np.where(sigma > 0, cov_with_portfolio / (safe_sigma * vol), 0.0)
    else:
        corr_with_portfolio = np.zeros_like(w)

    return asset_sharpe - corr_with_portfolio * port_sharpe


def compute_optimality_ratios(
    mu: NDArray[np.float64],
    mctr: NDArray[np.float64],
    risk_free_rate: float
) -> NDArray[np.float64]:
    """Excess return per unit of marginal risk; 0 where |MCTR| < 1e-4."""
    mu = np.asarray(mu, dtype=np.float64)
    mctr = np.asarray(mctr, dtype=np.float64)
    small = np.abs(mctr) < MIN_MCTR
    return np.where(small, 0.0, (mu - risk_free_rate) / np.where(small, 1.0, mctr))


def compute_risk_parity_weights(
    covariance: NDArray[np.float64],
    tol: float = 1e-4,
    max_iter: int = 100
) -> NDArray[np.float64]:
    """
    Equal-risk-contribution weights by fixed-point iteration.

    Starts from inverse-volatility weights and repeatedly moves each
    weight halfway (geometrically) toward (σ_p / N) / MCTR_i, renormalising
    to sum 1, until the largest weight change is below ``tol`` or
    ``max_iter`` passes have run. The undamped update w_i ∝ 1/MCTR_i can
    oscillate between two portfolios when assets are correlated.
    Assets with non-positive MCTR keep their weight for that pass.

    Parameters
    ----------
    covariance : NDArray[np.float64]
        Covariance matrix, shape (N, N)
    tol : float
        Convergence tolerance on the max weight change
    max_iter : int
        Maximum number of passes

    Returns
    -------
    NDArray[np.float64]
        Long-only weights summing to 1
    """
    S = np.asarray(covariance, dtype=np.float64)
    n = S.shape[0]
    sigma = np.sqrt(np.maximum(np.diag(S), 0.0))

    w = np.where(sigma > 0, 1.0 / np.where(sigma > 0, sigma, 1.0), 1.0)
    w = w / w.sum()

    for iteration in range(max_iter):
        vol = portfolio_volatility(w, S)
        if vol <= 0:
            break
        mctr = compute_mctr(w, S, vol)
        target_rc = vol / n

        proposal = np.where(
            mctr > 0, np.sqrt(w * target_rc / np.where(mctr > 0, mctr, 1.0)), w
        )
        total = proposal.sum()
        if total <= 0:
            break
        proposal = np.maximum(0.0, proposal / total)

        max_change = float(np.max(np.abs(w - proposal)))
        w = proposal
        if max_change < tol:
            logger.debug("Risk parity converged after %d iterations", iteration + 1)
            break

    return w


@dataclass(frozen=True)
class RiskDecomposition:
    """Portfolio-level metrics and per-asset risk attribution."""

    covariance: NDArray[np.float64]
    portfolio_vol: float
    portfolio_return: float
    sharpe: float
    mctr: NDArray[np.float64]
    risk_contribution: NDArray[np.float64]
    incremental_sharpe: NDArray[np.float64]
    optimality_ratio: NDArray[np.float64]
    asset_sharpe: NDArray[np.float64]

    def to_dict(self) -> Dict[str, object]:
        return {
            "portfolioVol": self.portfolio_vol,
            "portfolioReturn": self.portfolio_return,
            "sharpe": self.sharpe,
            "mctr": self.mctr.tolist(),
            "riskContribution": self.risk_contribution.tolist(),
            "iSharpe": self.incremental_sharpe.tolist(),
            "optimalityRatio": self.optimality_ratio.tolist(),
            "assetSharpe": self.asset_sharpe.tolist(),
        }


def risk_decomposition(
    weights: NDArray[np.float64],
    mu: NDArray[np.float64],
    sigma: NDArray[np.float64],
    correlation: NDArray[np.float64],
    risk_free_rate: float,
    cash_contribution: float = 0.0
) -> RiskDecomposition:
    """
    Full risk decomposition in one pass.

    Parameters
    ----------
    weights : NDArray[np.float64]
        Leverage-adjusted weights, shape (N,)
    mu, sigma : NDArray[np.float64]
        Expected returns and volatilities, shape (N,)
    correlation : NDArray[np.float64]
        Correlation matrix, shape (N, N)
    risk_free_rate : float
        Risk-free rate
    cash_contribution : float
        Return contributed by cash

    Returns
    -------
    RiskDecomposition
    """
    w = np.asarray(weights, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    sigma = np.asarray(sigma, dtype=np.float64)

    S = build_covariance(correlation, sigma)
    vol = portfolio_volatility(w, S)
    ret = portfolio_return(w, mu, cash_contribution)
    mctr = compute_mctr(w, S, vol)

    safe_sigma = np.where(sigma > 0, sigma, 1.0)
    asset_sharpe = np.where(sigma > 0, (mu - risk_free_rate) / safe_sigma, 0.0)

    return RiskDecomposition(
        covariance=S,
        portfolio_vol=vol,
        portfolio_return=ret,
        sharpe=sharpe_ratio(ret, vol, risk_free_rate),
        mctr=mctr,
        risk_contribution=compute_risk_contributions(w, mctr, vol),
        incremental_sharpe=compute_incremental_sharpe(w, mu, sigma, S, risk_free_rate, cash_contribution),
        optimality_ratio=compute_optimality_ratios(mu, mctr, risk_free_rate),
        asset_sharpe=asset_sharpe,
    )
