"""
Sample and EWMA correlation estimators.

Input returns are arranged as a (T, N) array: T observations of N assets,
most recent observation last.

EWMA weighting:
    w_t = λ^(T-1-t),   λ = 0.5^(1/half_life)

so the most recent observation has weight 1 and an observation
``half_life`` periods older has weight 1/2.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.matrix.kernel import covariance_to_correlation


# RiskMetrics daily decay
DEFAULT_DECAY = 0.94

MAX_ABS_SAMPLE_CORRELATION = 0.999


def decay_from_half_life(half_life: float) -> float:
    """EWMA decay factor λ for a half-life in periods."""
    if half_life <= 0:
        raise ValueError(f"half_life must be positive. Got {half_life}")
    return float(0.5 ** (1.0 / half_life))


def half_life_from_decay(decay: float) -> float:
    """Half-life in periods for an EWMA decay factor λ in (0, 1)."""
    if not 0.0 < decay < 1.0:
        raise ValueError(f"decay must be in (0, 1). Got {decay}")
    return float(np.log(0.5) / np.log(decay))


def _check_returns(returns: NDArray[np.float64]) -> NDArray[np.float64]:
    R = np.asarray(returns, dtype=np.float64)
    if R.ndim != 2:
        raise ValueError(f"returns must have shape (T, N). Got {R.shape}")
    return R


def _finalize(corr: NDArray[np.float64]) -> NDArray[np.float64]:
    corr = np.where(np.isfinite(corr), corr, 0.0)
    corr = np.clip(corr, -MAX_ABS_SAMPLE_CORRELATION, MAX_ABS_SAMPLE_CORRELATION)
    np.fill_diagonal(corr, 1.0)
    return corr


def sample_covariance(returns: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Sample covariance with Bessel correction.

    Parameters
    ----------
    returns : NDArray[np.float64]
        Returns, shape (T, N) with T >= 2

    Returns
    -------
    NDArray[np.float64]
        Covariance matrix, shape (N, N)
    """
    R = _check_returns(returns)
    T = R.shape[0]
    if T < 2:
        raise ValueError(f"Need at least 2 observations. Got {T}")
    Y = R - R.mean(axis=0)
    return Y.T @ Y / (T - 1)


def sample_correlation(returns: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Pearson correlation matrix.

    Off-diagonals are clamped to ±0.999; assets with zero variance get
    correlation 0 with everything else.

    Parameters
    ----------
    returns : NDArray[np.float64]
        Returns, shape (T, N)

    Returns
    -------
    NDArray[np.float64]
        Correlation matrix, shape (N, N)
    """
    R = _check_returns(returns)
    if R.shape[0] < 2:
        return np.eye(R.shape[1])
    corr, _ = covariance_to_correlation(sample_covariance(R))
    return _finalize(corr)


def ewma_weights(n_obs: int, decay: float) -> NDArray[np.float64]:
    """Unnormalized EWMA weights, oldest first, most recent = 1."""
    return decay ** np.arange(n_obs - 1, -1, -1, dtype=np.float64)


def ewma_covariance(
    returns: NDArray[np.float64],
    half_life: Optional[float] = None,
    decay: Optional[float] = None
) -> NDArray[np.float64]:
    """
    Exponentially weighted covariance.

    Deviations are taken from the equally weighted mean; the cross products
    are then averaged with EWMA weights.

    Parameters
    ----------
    returns : NDArray[np.float64]
        Returns, shape (T, N)
    half_life : float, optional
        Half-life in periods. Takes precedence over ``decay``.
    decay : float, optional
        Decay factor λ. Default 0.94.

    Returns
    -------
    NDArray[np.float64]
        Covariance matrix, shape (N, N)
    """
    R = _check_returns(returns)
    lam = decay_from_half_life(half_life) if half_life is not None else (
        DEFAULT_DECAY if decay is None else decay
    )
    T = R.shape[0]
    if T < 2:
        raise ValueError(f"Need at least 2 observations. Got {T}")

    w = ewma_weights(T, lam)
    Y = R - R.mean(axis=0)
    return (Y * w[:, None]).T @ Y / w.sum()


def ewma_correlation(
    returns: NDArray[np.float64],
    half_life: Optional[float] = None,
    decay: Optional[float] = None
) -> NDArray[np.float64]:
    """
    Exponentially weighted correlation matrix, clamped like ``sample_correlation``.

    See ``ewma_covariance`` for the parameters.
    """
    R = _check_returns(returns)
    if R.shape[0] < 2:
        return np.eye(R.shape[1])
    corr, _ = covariance_to_correlation(ewma_covariance(R, half_life, decay))
    return _finalize(corr)
