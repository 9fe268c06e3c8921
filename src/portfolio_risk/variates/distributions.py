"""
Per-asset return distribution parameters.

Users describe each asset by five percentile anchors of its one-year
return (p5, p25, p50, p75, p95). These are back-solved in closed form into
the parameters the variate generator consumes:

    skew_adj = p95 + p5 - 2 p50
    mu       = p50 + 0.1 skew_adj            (median shifted toward the long tail)
    sigma    = max(0.01, (p75 - p25) / 1.35)  (normal IQR ≈ 1.35 σ)
    skew     = skew_adj / (p95 - p5),  clamped to [-2, 2]
    df       = tail degrees of freedom from the 5-95 spread (3..30)

``AssetDistributionParams.normalized`` is the single place where missing or
non-finite values are replaced by their defaults; downstream code assumes
every field is finite.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import special, stats

from portfolio_risk.config import GAUSSIAN_DF
from portfolio_risk.matrix.kernel import MAX_ABS_CORRELATION, repair


DEFAULT_MU = 0.08
DEFAULT_SIGMA = 0.20
DEFAULT_SKEW = 0.0
DEFAULT_DF = 10.0

MIN_SIGMA = 0.01
MAX_ABS_SKEW = 2.0
MIN_DF = 3.0

# Width of the 5-95 range of a standard normal
NORMAL_RANGE_5_95 = 3.29


@dataclass(frozen=True)
class PercentileAnchors:
    """Five percentile anchors of a one-year return distribution."""

    p5: float = -0.25
    p25: float = -0.02
    p50: float = 0.08
    p75: float = 0.18
    p95: float = 0.40

    @classmethod
    def from_mapping(cls, values: Dict[str, Optional[float]]) -> "PercentileAnchors":
        """Build from a dict, using the default for missing or None keys."""
        defaults = cls()
        kwargs = {}
        for name in ("p5", "p25", "p50", "p75", "p95"):
            value = values.get(name)
            kwargs[name] = float(value) if value is not None else getattr(defaults, name)
        return cls(**kwargs)


@dataclass(frozen=True)
class AssetDistributionParams:
    """
    Return distribution of one asset over the simulation horizon.

    Attributes
    ----------
    mu : float
        Expected return
    sigma : float
        Volatility
    skew : float
        Signed skew, roughly -2..2
    df : float
        Tail degrees of freedom; 30 or more is treated as Gaussian
    """

    mu: float = DEFAULT_MU
    sigma: float = DEFAULT_SIGMA
    skew: float = DEFAULT_SKEW
    df: float = DEFAULT_DF

    @classmethod
    def normalized(
        cls,
        mu: Optional[float] = None,
        sigma: Optional[float] = None,
        skew: Optional[float] = None,
        df: Optional[float] = None
    ) -> "AssetDistributionParams":
        """
        Build params with every missing or non-finite field defaulted.

        sigma is floored at 0.01, skew clamped to [-2, 2] and df to [3, 30].
        """
        def finite_or(value: Optional[float], default: float) -> float:
            if value is None:
                return default
            value = float(value)
            return value if math.isfinite(value) else default

        return cls(
            mu=finite_or(mu, DEFAULT_MU),
            sigma=max(MIN_SIGMA, finite_or(sigma, DEFAULT_SIGMA)),
            skew=min(MAX_ABS_SKEW, max(-MAX_ABS_SKEW, finite_or(skew, DEFAULT_SKEW))),
            df=min(GAUSSIAN_DF, max(MIN_DF, finite_or(df, DEFAULT_DF))),
        )

    @property
    def is_gaussian(self) -> bool:
        return self.df >= GAUSSIAN_DF


def estimate_tail_df(p5: float, p95: float, sigma: float) -> float:
    """
    Tail degrees of freedom from the 5-95 percentile range.

    A normal distribution has p95 - p5 ≈ 3.29 σ. Ranges within 10% of that
    give df = 30 (Gaussian); wider ranges map to 30 / excess, rounded and
    clamped to [3, 30].
    """
    if sigma <= 0:
        return GAUSSIAN_DF

    spread = p95 - p5
    normal_spread = NORMAL_RANGE_5_95 * sigma
    if spread <= normal_spread * 1.1:
        return GAUSSIAN_DF

    excess = spread / normal_spread
    return float(round(min(GAUSSIAN_DF, max(MIN_DF, GAUSSIAN_DF / excess))))


def derive_distribution_params(
    anchors: Optional[PercentileAnchors] = None
) -> AssetDistributionParams:
    """
    Back-solve distribution parameters from percentile anchors.

    Parameters
    ----------
    anchors : PercentileAnchors, optional
        Percentile anchors. Defaults are used when None.

    Returns
    -------
    AssetDistributionParams
        Normalized parameters
    """
    a = anchors if anchors is not None else PercentileAnchors()

    skew_adjustment = a.p95 + a.p5 - 2.0 * a.p50
    mu = a.p50 + 0.1 * skew_adjustment

    sigma = max(MIN_SIGMA, (a.p75 - a.p25) / 1.35)

    total_range = a.p95 - a.p5
    skew = skew_adjustment / total_range if total_range > 0 else 0.0

    df = estimate_tail_df(a.p5, a.p95, sigma)

    return AssetDistributionParams.normalized(mu=mu, sigma=sigma, skew=skew, df=df)


def percentiles_from_params(params: AssetDistributionParams) -> PercentileAnchors:
    """
    Percentile anchors implied by distribution parameters.

    Uses Student-t quantiles for the spread and a linear skew adjustment;
    an approximate inverse of ``derive_distribution_params`` for display.
    """
    q = stats.t.ppf([0.05, 0.25, 0.75, 0.95], params.df)
    skew_adj = params.skew * params.sigma * 0.2
    return PercentileAnchors(
        p5=float(params.mu + params.sigma * q[0] - skew_adj),
        p25=float(params.mu + params.sigma * q[1] - skew_adj * 0.5),
        p50=float(params.mu + skew_adj * 0.3),
        p75=float(params.mu + params.sigma * q[2] + skew_adj * 0.5),
        p95=float(params.mu + params.sigma * q[3] + skew_adj),
    )


def stack_params(params: Sequence[AssetDistributionParams]) -> Dict[str, NDArray[np.float64]]:
    """Column arrays ``mu``, ``sigma``, ``skew``, ``df`` for a list of params."""
    return {
        "mu": np.array([p.mu for p in params], dtype=np.float64),
        "sigma": np.array([p.sigma for p in params], dtype=np.float64),
        "skew": np.array([p.skew for p in params], dtype=np.float64),
        "df": np.array([p.df for p in params], dtype=np.float64),
    }


def correlation_attenuation_factor(df: float) -> float:
    """
    Approximate correlation attenuation of a Gaussian copula with t marginals.

    Transforming each coordinate of a correlated normal vector through its
    own t quantile lowers the Pearson correlation of the outputs. The
    specified correlation is multiplied by this factor in expectation:

        a(df) = (df - 2)/df · (Γ((df-1)/2) / Γ(df/2))² · sqrt(π)

    clamped to [0.5, 1]; 1 for df >= 30 and 0.5 for df <= 2.
    """
    if df >= GAUSSIAN_DF:
        return 1.0
    if df <= 2:
        return 0.5
    log_ratio = special.gammaln((df - 1.0) / 2.0) - special.gammaln(df / 2.0)
    correction = (df - 2.0) / df * math.exp(2.0 * log_ratio) * math.sqrt(math.pi)
    return float(min(1.0, max(0.5, correction)))


def correlation_inflation_factor(df: float) -> float:
    """Factor that pre-compensates specified correlations for attenuation."""
    return 1.0 / correlation_attenuation_factor(df)


def inflate_correlation(
    corr: NDArray[np.float64],
    dfs: Sequence[float]
) -> NDArray[np.float64]:
    """
    Pre-compensate a correlation matrix for per-asset t attenuation.

    Entry (i, j) is multiplied by sqrt(k(df_i) k(df_j)) with k the
    inflation factor, clamped to ±0.999 and repaired so the result still
    factorizes.
    """
    C = np.asarray(corr, dtype=np.float64)
    dfs = np.asarray(dfs, dtype=np.float64)
    if C.shape != (len(dfs), len(dfs)):
        raise ValueError(f"corr shape {C.shape} doesn't match {len(dfs)} dfs")
    k = np.sqrt(np.array([correlation_inflation_factor(df) for df in dfs]))
    inflated = np.clip(C * np.outer(k, k), -MAX_ABS_CORRELATION, MAX_ABS_CORRELATION)
    np.fill_diagonal(inflated, 1.0)
    return repair(inflated)


def bootstrap_annual_returns(
    daily_returns: NDArray[np.float64],
    n_samples: int = 1000,
    trading_days: int = 252,
    rng: Optional[np.random.Generator] = None
) -> Optional[NDArray[np.float64]]:
    """
    Sorted one-year returns from an i.i.d. bootstrap of daily returns.

    Returns None when fewer than 20 daily returns are available. The output
    can be fed to ``anchors_from_samples`` to seed percentile anchors from
    history.
    """
    daily = np.asarray(daily_returns, dtype=np.float64)
    daily = daily[np.isfinite(daily)]
    if len(daily) < 20:
        return None
    rng = rng if rng is not None else np.random.default_rng()
    idx = rng.integers(0, len(daily), size=(n_samples, trading_days))
    annual = np.prod(1.0 + daily[idx], axis=1) - 1.0
    return np.sort(annual)


def anchors_from_samples(samples: NDArray[np.float64]) -> PercentileAnchors:
    """Empirical percentile anchors of a sample of returns."""
    s = np.sort(np.asarray(samples, dtype=np.float64))
    if len(s) == 0:
        raise ValueError("Cannot compute anchors from an empty sample")

    def at(p: float) -> float:
        return float(s[min(int(len(s) * p), len(s) - 1)])

    return PercentileAnchors(p5=at(0.05), p25=at(0.25), p50=at(0.50), p75=at(0.75), p95=at(0.95))
