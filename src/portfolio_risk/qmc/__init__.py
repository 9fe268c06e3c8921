"""
Quasi-Monte Carlo: Sobol and Halton sequences and the inverse-CDF bridge.
"""

from portfolio_risk.qmc.sobol import SobolSequence, direction_numbers, MAX_DIMENSIONS
from portfolio_risk.qmc.halton import HaltonSequence, halton_value, first_primes
from portfolio_risk.qmc.transforms import (
    inverse_normal_cdf,
    uniform_to_normal,
    inverse_chi_squared_cdf,
    create_sequence,
    qmc_normals,
    qmc_multivariate_t_inputs,
    star_discrepancy_estimate,
)

__all__ = [
    "SobolSequence",
    "direction_numbers",
    "MAX_DIMENSIONS",
    "HaltonSequence",
    "halton_value",
    "first_primes",
    "inverse_normal_cdf",
    "uniform_to_normal",
    "inverse_chi_squared_cdf",
    "create_sequence",
    "qmc_normals",
    "qmc_multivariate_t_inputs",
    "star_discrepancy_estimate",
]
