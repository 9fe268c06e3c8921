"""
Correlated return variates under interchangeable fat-tail models.

All models share one signature: a Cholesky factor L of the asset
correlation matrix plus per-asset (mu, sigma, skew, df) produce one
correlated return vector per path.

Models:
    - Gaussian:        r = mu + clip(L z, ±6) σ
    - Per-asset t:     Gaussian copula; each coordinate of L z is mapped
                       through its own t quantile. Simple, but attenuates
                       Pearson correlation for small df.
    - Multivariate t:  every coordinate of L z is scaled by one shared
                       factor sqrt(df/χ²). Correlation is preserved exactly
                       and tails fatten together ("crisis correlation").
    - Skew:            delta-parameterised skew applied after either t model,
                       δ = skew / sqrt(1 + skew²).

Every transformed value is clamped before scaling and every asset return is
clamped to [-100%, +1000%], so outputs are always finite.
"""

import math
from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray
from scipy import special

from portfolio_risk.config import GAUSSIAN_DF, FatTailMethod
from portfolio_risk.variates.distributions import (
    AssetDistributionParams,
    DEFAULT_DF,
    stack_params,
)


Z_CLAMP = 6.0
MVT_CLAMP = 8.0
MIN_RETURN = -1.0
MAX_RETURN = 10.0

CHI_SQUARED_FLOOR = 0.01
# Above this df the chi-squared draw uses a normal approximation
CHI_SQUARED_EXACT_MAX_DF = 100

SKEW_THRESHOLD = 0.01


def clamp_returns(returns: NDArray[np.float64]) -> NDArray[np.float64]:
    """Clamp returns to [-100%, +1000%]."""
    return np.clip(returns, MIN_RETURN, MAX_RETURN)


def skew_adjust(
    z: NDArray[np.float64],
    skew: Union[float, NDArray[np.float64]]
) -> NDArray[np.float64]:
    """
    Delta-parameterised skew transform.

        δ = skew / sqrt(1 + skew²)
        z' = z sqrt(1 - δ²) + δ |z| - δ sqrt(2/π)

    Entries whose |skew| <= 0.01 are returned unchanged. ``skew`` may be a
    scalar or broadcast against the last axis of ``z``.
    """
    z = np.asarray(z, dtype=np.float64)
    skew = np.broadcast_to(np.asarray(skew, dtype=np.float64), z.shape)
    delta = skew / np.sqrt(1.0 + skew * skew)
    skewed = (
        z * np.sqrt(1.0 - delta * delta)
        + delta * np.abs(z)
        - delta * math.sqrt(2.0 / math.pi)
    )
    return np.where(np.abs(skew) > SKEW_THRESHOLD, skewed, z)


def skewed_t_transform(
    z: NDArray[np.float64],
    skew: Union[float, NDArray[np.float64]],
    df: Union[float, NDArray[np.float64]]
) -> NDArray[np.float64]:
    """
    Legacy cubic skew with a tail multiplier.

        z' = z + skew (z² - 1) / 3

    For df < 30, values beyond ±1.5 are further stretched by
    1 + (30 - df)/30 · 0.5. Kept for comparing against older results; the
    generator models use ``skew_adjust``.
    """
    z = np.asarray(z, dtype=np.float64)
    skewed = z + np.asarray(skew) * (z * z - 1.0) / 3.0
    df = np.asarray(df, dtype=np.float64)
    multiplier = 1.0 + (GAUSSIAN_DF - df) / GAUSSIAN_DF * 0.5
    stretch = (df < GAUSSIAN_DF) & (np.abs(skewed) > 1.5)
    return np.where(stretch, skewed * multiplier, skewed)


def chi_squared(
    df: float,
    size: int,
    rng: np.random.Generator
) -> NDArray[np.float64]:
    """
    Chi-squared draws, floored at 0.01.

    Sum of floor(df) squared standard normals for df <= 100, normal
    approximation df + sqrt(2 df) z above that.
    """
    if df > CHI_SQUARED_EXACT_MAX_DF:
        z = rng.standard_normal(size)
        return np.maximum(CHI_SQUARED_FLOOR, df + math.sqrt(2.0 * df) * z)

    k = max(1, int(df))
    z = rng.standard_normal((size, k))
    return np.maximum(CHI_SQUARED_FLOOR, np.sum(z * z, axis=1))


def shared_tail_df(dfs: NDArray[np.float64]) -> float:
    """
    Degrees of freedom shared by all assets in the multivariate-t model.

    The fattest tail wins: the minimum df in (0, 100), or 10 if none.
    """
    dfs = np.asarray(dfs, dtype=np.float64)
    candidates = dfs[(dfs > 0) & (dfs < 100)]
    return float(candidates.min()) if candidates.size else DEFAULT_DF


class VariateGenerator:
    """
    Correlated asset-return generator.

    Attributes
    ----------
    cholesky_factor : NDArray[np.float64]
        Lower-triangular L, shape (N, N)
    mu, sigma, skew, df : NDArray[np.float64]
        Per-asset parameters, shape (N,)
    fat_tail_method : FatTailMethod
        Model used by ``asset_returns``
    """

    def __init__(
        self,
        cholesky_factor: NDArray[np.float64],
        params: Sequence[AssetDistributionParams],
        fat_tail_method: Union[str, FatTailMethod] = FatTailMethod.MULTIVARIATE_T,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        self.cholesky_factor = np.asarray(cholesky_factor, dtype=np.float64)
        self.n_assets = self.cholesky_factor.shape[0]

        if self.cholesky_factor.shape != (self.n_assets, self.n_assets):
            raise ValueError(
                f"cholesky_factor must be square. Got {self.cholesky_factor.shape}"
            )
        if len(params) != self.n_assets:
            raise ValueError(
                f"Got {len(params)} distribution params for {self.n_assets} assets"
            )

        cols = stack_params(params)
        self.mu = cols["mu"]
        self.sigma = cols["sigma"]
        self.skew = cols["skew"]
        self.df = cols["df"]

        self.fat_tail_method = FatTailMethod.parse(fat_tail_method)
        self.rng = rng if rng is not None else np.random.default_rng()

        self.mvt_df = shared_tail_df(self.df)

    @property
    def uses_shared_chi_squared(self) -> bool:
        """True if ``asset_returns`` needs one chi-squared draw per path."""
        return (
            self.fat_tail_method == FatTailMethod.MULTIVARIATE_T
            and self.mvt_df < GAUSSIAN_DF
        )

    def standard_normals(self, n_paths: int) -> NDArray[np.float64]:
        """Independent N(0, 1) draws, shape (n_paths, N)."""
        return self.rng.standard_normal((n_paths, self.n_assets))

    def correlate(self, z: NDArray[np.float64]) -> NDArray[np.float64]:
        """Impose the correlation: rows of z L^T."""
        return np.asarray(z, dtype=np.float64) @ self.cholesky_factor.T

    def correlated_normals(self, n_paths: int) -> NDArray[np.float64]:
        """Correlated N(0, C) draws, shape (n_paths, N)."""
        return self.correlate(self.standard_normals(n_paths))

    def chi_squared(self, n_paths: int, df: Optional[float] = None) -> NDArray[np.float64]:
        """Chi-squared draws with ``df`` (default: the shared tail df)."""
        return chi_squared(self.mvt_df if df is None else df, n_paths, self.rng)

    def _to_returns(self, transformed: NDArray[np.float64]) -> NDArray[np.float64]:
        return clamp_returns(self.mu + transformed * self.sigma)

    def gaussian(self, correlated: NDArray[np.float64]) -> NDArray[np.float64]:
        """Gaussian returns from correlated normals."""
        return self._to_returns(np.clip(correlated, -Z_CLAMP, Z_CLAMP))

    def per_asset_t(self, correlated: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Gaussian copula with per-asset Student-t marginals.

        Each coordinate is mapped u = Φ(z), t = F_t⁻¹(u; df_i) and rescaled
        by sqrt((df-2)/df) to unit variance. Assets with df >= 30 keep
        their normal draw.

        Parameters
        ----------
        correlated : NDArray[np.float64]
            Correlated standard normals, shape (n_paths, N)

        Returns
        -------
        NDArray[np.float64]
            Asset returns, shape (n_paths, N)
        """
        z = np.clip(correlated, -Z_CLAMP, Z_CLAMP)

        fat = self.df < GAUSSIAN_DF
        transformed = z.copy()
        if np.any(fat):
            df = self.df[fat]
            u = special.ndtr(z[:, fat])
            t = special.stdtrit(df, u)
            variance_correction = np.where(df > 2, np.sqrt(np.maximum(df - 2, 0.0) / df), 1.0)
            t = t * variance_correction
            transformed[:, fat] = np.where(np.isfinite(t), t, z[:, fat])

        transformed = np.clip(transformed, -Z_CLAMP, Z_CLAMP)
        transformed = skew_adjust(transformed, self.skew)
        transformed = np.where(np.isfinite(transformed), transformed, 0.0)
        transformed = np.clip(transformed, -Z_CLAMP, Z_CLAMP)

        return self._to_returns(transformed)

    def multivariate_t(
        self,
        correlated: NDArray[np.float64],
        chi2: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        """
        Shared-factor multivariate Student-t.

        All coordinates of a path are scaled by the same sqrt(df/χ²) and
        corrected to unit variance by sqrt((df-2)/df). Falls back to
        ``gaussian`` when the shared df is 30 or more.

        Parameters
        ----------
        correlated : NDArray[np.float64]
            Correlated standard normals, shape (n_paths, N)
        chi2 : NDArray[np.float64], optional
            One chi-squared value per path. Drawn from ``rng`` when None;
            QMC callers pass values derived from the sequence.

        Returns
        -------
        NDArray[np.float64]
            Asset returns, shape (n_paths, N)
        """
        df = self.mvt_df
        if df >= GAUSSIAN_DF:
            return self.gaussian(correlated)

        n_paths = correlated.shape[0]
        if chi2 is None:
            chi2 = self.chi_squared(n_paths)
        chi2 = np.maximum(np.asarray(chi2, dtype=np.float64), CHI_SQUARED_FLOOR)

        scale = np.sqrt(df / chi2)
        variance_correction = math.sqrt((df - 2.0) / df) if df > 2 else 1.0

        transformed = correlated * (scale * variance_correction)[:, None]
        transformed = skew_adjust(transformed, self.skew)
        transformed = np.clip(transformed, -MVT_CLAMP, MVT_CLAMP)

        return self._to_returns(transformed)

    def returns_from_normals(
        self,
        z: NDArray[np.float64],
        chi2: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        """
        Asset returns from independent standard normals under the configured model.

        Parameters
        ----------
        z : NDArray[np.float64]
            Independent standard normals, shape (n_paths, N)
        chi2 : NDArray[np.float64], optional
            Per-path chi-squared values for the multivariate-t model

        Returns
        -------
        NDArray[np.float64]
            Asset returns, shape (n_paths, N)
        """
        correlated = self.correlate(z)
        if self.fat_tail_method == FatTailMethod.MULTIVARIATE_T:
            return self.multivariate_t(correlated, chi2)
        if self.fat_tail_method == FatTailMethod.PER_ASSET_T:
            return self.per_asset_t(correlated)
        return self.gaussian(correlated)

    def asset_returns(self, n_paths: int) -> NDArray[np.float64]:
        """Pseudo-random asset returns, shape (n_paths, N)."""
        return self.returns_from_normals(self.standard_normals(n_paths))

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"VariateGenerator(n_assets={self.n_assets}, "
            f"method={self.fat_tail_method.value})"
        )
