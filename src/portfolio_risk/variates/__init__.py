"""
Variate generation: distribution parameters and correlated return models.

This module implements:
- Percentile-anchor back-solve into (mu, sigma, skew, df)
- Gaussian, per-asset Student-t copula and shared-factor multivariate t
- Skew transforms and chi-squared draws
- Importance sampling for tail-loss probabilities
"""

from portfolio_risk.variates.distributions import (
    AssetDistributionParams,
    PercentileAnchors,
    derive_distribution_params,
    estimate_tail_df,
    percentiles_from_params,
    correlation_attenuation_factor,
    correlation_inflation_factor,
    inflate_correlation,
    bootstrap_annual_returns,
    anchors_from_samples,
)
from portfolio_risk.variates.generator import (
    VariateGenerator,
    chi_squared,
    skew_adjust,
    skewed_t_transform,
    shared_tail_df,
)
from portfolio_risk.variates.importance import (
    ImportanceSamplingResult,
    importance_sampled_tail_probability,
)

__all__ = [
    "AssetDistributionParams",
    "PercentileAnchors",
    "derive_distribution_params",
    "estimate_tail_df",
    "percentiles_from_params",
    "correlation_attenuation_factor",
    "correlation_inflation_factor",
    "inflate_correlation",
    "bootstrap_annual_returns",
    "anchors_from_samples",
    "VariateGenerator",
    "chi_squared",
    "skew_adjust",
    "skewed_t_transform",
    "shared_tail_df",
    "ImportanceSamplingResult",
    "importance_sampled_tail_probability",
]
