"""
Shrinkage of sample correlation toward a constant-correlation target.

Ledoit & Wolf (2003), "Honey, I Shrunk the Sample Covariance Matrix".

The shrunk covariance is

    Σ* = δ F + (1 - δ) S

where S is the sample covariance and F the constant-correlation target:

    F_ii = S_ii
    F_ij = r̄ sqrt(S_ii S_jj)      (r̄ = average off-diagonal sample correlation)

The asymptotically optimal intensity is δ* = clip(κ̂ / T, 0, 1) with
κ̂ = (π̂ - ρ̂) / γ̂:

    π̂  sum of asymptotic variances of the entries of sqrt(T) S
    ρ̂  sum of asymptotic covariances between the entries of F and S
    γ̂  misspecification of the target, ||F - S||²_F
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.correlation.estimators import decay_from_half_life, ewma_weights
from portfolio_risk.matrix.kernel import (
    covariance_to_correlation,
    is_positive_definite,
    repair,
)

logger = logging.getLogger(__name__)


# Covariance diagonal used when there is not enough history to estimate
DEGENERATE_VARIANCE = 0.04

MAX_ABS_SHRUNK_CORRELATION = 0.99


@dataclass(frozen=True)
class ShrinkageResult:
    """Output of a shrinkage estimator."""

    covariance: Optional[NDArray[np.float64]]
    correlation: NDArray[np.float64]
    shrinkage_intensity: float
    average_correlation: float


def average_off_diagonal(corr: NDArray[np.float64]) -> float:
    """Mean of the strict upper triangle; 0 for a 1x1 matrix."""
    C = np.asarray(corr, dtype=np.float64)
    iu = np.triu_indices(C.shape[0], k=1)
    if len(iu[0]) == 0:
        return 0.0
    return float(np.mean(C[iu]))


def shrinkage_target(corr: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Constant-correlation target for a correlation matrix.

    Every off-diagonal entry is replaced by the average off-diagonal
    correlation; the diagonal is 1.
    """
    C = np.asarray(corr, dtype=np.float64)
    target = np.full(C.shape, average_off_diagonal(C))
    np.fill_diagonal(target, 1.0)
    return target


def ledoit_wolf_shrinkage(
    returns: NDArray[np.float64],
    half_life: Optional[float] = None
) -> ShrinkageResult:
    """
    Ledoit-Wolf shrinkage toward constant correlation.

    Parameters
    ----------
    returns : NDArray[np.float64]
        Returns, shape (T, N)
    half_life : float, optional
        If given, the sample moments are EWMA-weighted with this half-life
        instead of equally weighted.

    Returns
    -------
    ShrinkageResult
        Shrunk covariance and correlation, intensity δ* in [0, 1] and the
        average sample correlation r̄. With T < 2 or N < 2 the result is
        the degenerate default (covariance 0.04·I, identity correlation,
        intensity 1, r̄ = 0).
    """
    R = np.asarray(returns, dtype=np.float64)
    if R.ndim != 2:
        raise ValueError(f"returns must have shape (T, N). Got {R.shape}")
    T, N = R.shape

    if T < 2 or N < 2:
        return ShrinkageResult(
            covariance=np.eye(N) * DEGENERATE_VARIANCE,
            correlation=np.eye(N),
            shrinkage_intensity=1.0,
            average_correlation=0.0,
        )

    Y = R - R.mean(axis=0)

    if half_life is None:
        w = np.full(T, 1.0 / T)
        S = Y.T @ Y / (T - 1)
        # Sample covariance without Bessel correction, S (T-1)/T
        S_biased = S * (T - 1) / T
    else:
        raw = ewma_weights(T, decay_from_half_life(half_life))
        w = raw / raw.sum()
        S_biased = (Y * w[:, None]).T @ Y
        S = S_biased

    variances = np.diag(S)
    stds = np.sqrt(np.maximum(variances, 0.0))
    sample_corr, _ = covariance_to_correlation(S)
    r_bar = average_off_diagonal(sample_corr)

    # Target: sample variances, constant correlation off the diagonal
    F = r_bar * np.outer(stds, stds)
    np.fill_diagonal(F, variances)

    # Per-observation deviations of the cross products, shape (T, N, N)
    cross = Y[:, :, None] * Y[:, None, :] - S_biased[None, :, :]

    # π̂
    pi_matrix = np.einsum("t,tij->ij", w, cross ** 2)
    pi_hat = float(pi_matrix.sum())

    # γ̂
    gamma_hat = float(np.sum((F - S) ** 2))

    # ρ̂: diagonal terms plus the off-diagonal covariance with the target.
    # theta[i, j] = E[(y_i² - s_ii)(y_i y_j - s_ij)]
    sq_dev = np.einsum("tii->ti", cross)
    theta = np.einsum("t,ti,tij->ij", w, sq_dev, cross)

    rho_hat = float(np.trace(pi_matrix))
    positive = stds > 0
    valid = np.outer(positive, positive)
    np.fill_diagonal(valid, False)
    if np.any(valid):
        safe_var = np.where(variances > 0, variances, 1.0)
        ratio = np.sqrt(safe_var[None, :] / safe_var[:, None])  # sqrt(S_jj / S_ii)
        off = ratio * theta + ratio.T * theta.T
        rho_hat += float(r_bar / 2.0 * np.sum(off[valid]))

    kappa_hat = (pi_hat - rho_hat) / gamma_hat if gamma_hat > 0 else 0.0
    delta = float(np.clip(kappa_hat / T, 0.0, 1.0))

    shrunk_cov = delta * F + (1.0 - delta) * S
    shrunk_corr, _ = covariance_to_correlation(shrunk_cov)

    logger.debug(
        "Ledoit-Wolf shrinkage: delta=%.1f%%, r_bar=%.3f", delta * 100, r_bar
    )

    return ShrinkageResult(
        covariance=shrunk_cov,
        correlation=shrunk_corr,
        shrinkage_intensity=delta,
        average_correlation=r_bar,
    )


def default_shrinkage_intensity(n_assets: int) -> float:
    """Size-based heuristic, min(0.5, 0.1 + N/100)."""
    return min(0.5, 0.1 + n_assets / 100.0)


def shrink_to_constant_correlation(
    corr: NDArray[np.float64],
    intensity: Optional[float] = None,
    ensure_valid: bool = True
) -> ShrinkageResult:
    """
    Shrink a correlation matrix toward its constant-correlation target.

    For use when only a correlation matrix is available (no return
    history). Off-diagonals become (1 - δ) ρ_ij + δ r̄, clamped to ±0.99.

    Parameters
    ----------
    corr : NDArray[np.float64]
        Sample correlation matrix, shape (N, N)
    intensity : float, optional
        Shrinkage intensity δ in [0, 1]. Default ``default_shrinkage_intensity(N)``.
    ensure_valid : bool
        If True and the shrunk matrix is not positive definite, pass it
        through ``repair``.

    Returns
    -------
    ShrinkageResult
        ``covariance`` is None.
    """
    C = np.asarray(corr, dtype=np.float64)
    if C.ndim != 2 or C.shape[0] != C.shape[1]:
        raise ValueError(f"corr must be square. Got shape {C.shape}")
    n = C.shape[0]

    delta = default_shrinkage_intensity(n) if intensity is None else float(intensity)
    if not 0.0 <= delta <= 1.0:
        raise ValueError(f"intensity must be in [0, 1]. Got {delta}")

    r_bar = average_off_diagonal(C)
    shrunk = np.clip(
        (1.0 - delta) * C + delta * r_bar,
        -MAX_ABS_SHRUNK_CORRELATION,
        MAX_ABS_SHRUNK_CORRELATION,
    )
    np.fill_diagonal(shrunk, 1.0)

    if ensure_valid and not is_positive_definite(shrunk):
        shrunk = repair(shrunk)

    return ShrinkageResult(
        covariance=None,
        correlation=shrunk,
        shrinkage_intensity=delta,
        average_correlation=r_bar,
    )
