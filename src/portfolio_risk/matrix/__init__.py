"""
Matrix kernel: Cholesky factorization, correlation repair and conversions.
"""

from portfolio_risk.matrix.kernel import (
    cholesky,
    is_positive_definite,
    repair,
    make_valid_correlation,
    nearest_psd,
    nearest_correlation_matrix,
    matmul,
    transpose,
    correlation_to_covariance,
    covariance_to_correlation,
)

__all__ = [
    "cholesky",
    "is_positive_definite",
    "repair",
    "make_valid_correlation",
    "nearest_psd",
    "nearest_correlation_matrix",
    "matmul",
    "transpose",
    "correlation_to_covariance",
    "covariance_to_correlation",
]
