"""
Inverse-CDF bridge from low-discrepancy uniforms to simulation variates.

Joy, Boyle & Tan (1996). A QMC point must be mapped to normals one
coordinate at a time through the inverse normal CDF. Transforms that
consume two uniforms per normal (Box-Muller, polar) destroy the
low-discrepancy structure and with it the O(N^-1 (log N)^s) convergence.

For the shared-factor multivariate t the sequence carries one extra
dimension, mapped through the inverse chi-squared CDF, so that every
random input of a path comes from the same point:

    point = (u_1 .. u_N, u_{N+1})
    z_i   = Φ⁻¹(u_i)
    χ²    = F⁻¹_χ²(u_{N+1}; df)      (Wilson-Hilferty, exact for small df)
"""

import logging
from typing import Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy import special
from scipy.stats import qmc

from portfolio_risk.qmc.halton import HaltonSequence
from portfolio_risk.qmc.sobol import MAX_DIMENSIONS, SobolSequence

logger = logging.getLogger(__name__)

LowDiscrepancySequence = Union[SobolSequence, HaltonSequence]


# Acklam's rational approximation coefficients
_A = (-3.969683028665376e+01, 2.209460984245205e+02, -2.759285104469687e+02,
      1.383577518672690e+02, -3.066479806614716e+01, 2.506628277459239e+00)
_B = (-5.447609879822406e+01, 1.615858368580409e+02, -1.556989798598866e+02,
      6.680131188771972e+01, -1.328068155288572e+01)
_C = (-7.784894002430293e-03, -3.223964580411365e-01, -2.400758277161838e+00,
      -2.549732539343734e+00, 4.374664141464968e+00, 2.938163982698783e+00)
_D = (7.784695709041462e-03, 3.224671290700398e-01, 2.445134137142996e+00,
      3.754408661907416e+00)

P_LOW = 0.02425
P_HIGH = 1.0 - P_LOW

UNIFORM_EPS = 1e-10
CHI_SQUARED_QMC_FLOOR = 0.001

# Below this df the Wilson-Hilferty cube is too biased in the left tail
EXACT_CHI_SQUARED_DF = 5.0


def _tail(q: NDArray[np.float64]) -> NDArray[np.float64]:
    c, d = _C, _D
    return (((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / \
        ((((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1.0)


def inverse_normal_cdf(p: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Standard normal quantile, Acklam's algorithm (relative error < 1.2e-9).

    Parameters
    ----------
    p : array_like
        Probabilities; p <= 0 maps to -inf and p >= 1 to +inf

    Returns
    -------
    NDArray[np.float64]
        Quantiles, same shape as ``p``
    """
    p = np.asarray(p, dtype=np.float64)
    shape = p.shape
    p = np.atleast_1d(p)
    out = np.empty_like(p)

    low = (p > 0) & (p < P_LOW)
    high = (p > P_HIGH) & (p < 1)
    central = (p >= P_LOW) & (p <= P_HIGH)

    if np.any(low):
        out[low] = _tail(np.sqrt(-2.0 * np.log(p[low])))
    if np.any(high):
        out[high] = -_tail(np.sqrt(-2.0 * np.log1p(-p[high])))
    if np.any(central):
        a, b = _A, _B
        q = p[central] - 0.5
        r = q * q
        out[central] = (((((a[0] * r + a[1]) * r + a[2]) * r + a[3]) * r + a[4]) * r + a[5]) * q / \
            (((((b[0] * r + b[1]) * r + b[2]) * r + b[3]) * r + b[4]) * r + 1.0)

    out[p <= 0] = -np.inf
    out[p >= 1] = np.inf
    out[np.isnan(p)] = np.nan
    return out.reshape(shape)


def uniform_to_normal(u: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse normal CDF of uniforms clamped to [1e-10, 1 - 1e-10]."""
    return inverse_normal_cdf(np.clip(np.asarray(u, dtype=np.float64), UNIFORM_EPS, 1.0 - UNIFORM_EPS))


def inverse_chi_squared_cdf(
    u: NDArray[np.float64],
    df: float
) -> NDArray[np.float64]:
    """
    Chi-squared quantile by the Wilson-Hilferty approximation.

    (X/df)^(1/3) is approximately N(1 - h, h) with h = 2/(9 df), so

        X ≈ df (1 - h + sqrt(h) Φ⁻¹(u))³

    Where the cube base is not positive (extreme left tail) the crude
    df·u^(2/df) is used instead. For df < 5 the approximation overstates
    E[1/χ²] badly (about twice the true value at df = 3) and with it the
    multivariate-t tails, so the exact quantile 2·P⁻¹(df/2, u) of the
    regularized incomplete gamma function is used there. Results are
    floored at 0.001; u <= 0 maps to 0 and u >= 1 to +inf.
    """
    if df <= 0:
        raise ValueError(f"df must be positive. Got {df}")
    u = np.asarray(u, dtype=np.float64)

    if df < EXACT_CHI_SQUARED_DF:
        exact = 2.0 * special.gammaincinv(0.5 * df, np.clip(u, 0.0, 1.0))
        result = np.maximum(CHI_SQUARED_QMC_FLOOR, exact)
        result = np.where(u <= 0, 0.0, result)
        return np.where(u >= 1, np.inf, result)

    h = 2.0 / (9.0 * df)

    with np.errstate(divide="ignore", invalid="ignore"):
        base = 1.0 - h + np.sqrt(h) * inverse_normal_cdf(u)
        wilson_hilferty = df * base ** 3
        crude = df * np.power(np.clip(u, 0.0, 1.0), 2.0 / df)
    result = np.maximum(CHI_SQUARED_QMC_FLOOR, np.where(base > 0, wilson_hilferty, crude))

    result = np.where(u <= 0, 0.0, result)
    result = np.where(u >= 1, np.inf, result)
    return result


def create_sequence(
    kind: str,
    dimensions: int,
    skip: int = 0
) -> LowDiscrepancySequence:
    """
    Build a low-discrepancy sequence.

    Sobol requests beyond 21 dimensions fall back to Halton.

    Parameters
    ----------
    kind : str
        "sobol" or "halton"
    dimensions : int
        Coordinates per point
    skip : int
        Initial points to discard

    Returns
    -------
    SobolSequence or HaltonSequence
    """
    if kind == "halton":
        return HaltonSequence(dimensions, skip)
    if kind != "sobol":
        raise ValueError(f"Unknown sequence {kind!r}. Expected 'sobol' or 'halton'")
    if dimensions > MAX_DIMENSIONS:
        logger.warning(
            "Sobol supports %d dimensions, %d requested; using Halton",
            MAX_DIMENSIONS, dimensions,
        )
        return HaltonSequence(dimensions, skip)
    return SobolSequence(dimensions, skip)


def qmc_normals(
    sequence: LowDiscrepancySequence,
    start: int,
    n_paths: int,
    n_assets: int
) -> NDArray[np.float64]:
    """
    Independent standard normals from sequence points ``start`` onwards.

    Returns
    -------
    NDArray[np.float64]
        Normals, shape (n_paths, n_assets)
    """
    if sequence.dimensions < n_assets:
        raise ValueError(
            f"Sequence has {sequence.dimensions} dimensions, need {n_assets}"
        )
    points = sequence.points_at(start, n_paths)
    return uniform_to_normal(points[:, :n_assets])


def qmc_multivariate_t_inputs(
    sequence: LowDiscrepancySequence,
    start: int,
    n_paths: int,
    n_assets: int,
    df: float
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Normals and shared chi-squared values from (N+1)-dimensional points.

    Returns
    -------
    z : NDArray[np.float64]
        Independent standard normals, shape (n_paths, n_assets)
    chi2 : NDArray[np.float64]
        Chi-squared values with ``df`` degrees of freedom, shape (n_paths,)
    """
    if sequence.dimensions < n_assets + 1:
        raise ValueError(
            f"Sequence has {sequence.dimensions} dimensions, need {n_assets + 1}"
        )
    points = sequence.points_at(start, n_paths)
    z = uniform_to_normal(points[:, :n_assets])
    u_chi = np.clip(points[:, n_assets], UNIFORM_EPS, 1.0 - UNIFORM_EPS)
    return z, inverse_chi_squared_cdf(u_chi, df)


def star_discrepancy_estimate(points: NDArray[np.float64]) -> float:
    """
    L2-star discrepancy of a point set in [0, 1]^d.

    Lower is more uniform; used to compare sequences and to check that a
    slice of the sequence keeps its space-filling quality.
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[0] == 0:
        raise ValueError(f"points must have shape (n, d) with n > 0. Got {pts.shape}")
    return float(qmc.discrepancy(np.clip(pts, 0.0, 1.0), method="L2-star"))
