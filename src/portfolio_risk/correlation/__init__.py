"""
Correlation estimation: sample and EWMA estimators, Ledoit-Wolf shrinkage.
"""

from portfolio_risk.correlation.estimators import (
    sample_covariance,
    sample_correlation,
    ewma_covariance,
    ewma_correlation,
    decay_from_half_life,
    half_life_from_decay,
)
from portfolio_risk.correlation.shrinkage import (
    ShrinkageResult,
    ledoit_wolf_shrinkage,
    shrink_to_constant_correlation,
    shrinkage_target,
    default_shrinkage_intensity,
)

__all__ = [
    "sample_covariance",
    "sample_correlation",
    "ewma_covariance",
    "ewma_correlation",
    "decay_from_half_life",
    "half_life_from_decay",
    "ShrinkageResult",
    "ledoit_wolf_shrinkage",
    "shrink_to_constant_correlation",
    "shrinkage_target",
    "default_shrinkage_intensity",
]
