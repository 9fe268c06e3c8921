"""
Unit tests for distribution parameters and the variate generator.

Tests cover:
- Percentile anchor back-solve and normalization
- Correlation attenuation and inflation
- Gaussian, per-asset t and multivariate t models
- Skew transforms and chi-squared draws
- Importance-sampled tail probabilities
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose
from scipy import special, stats

from portfolio_risk.config import FatTailMethod
from portfolio_risk.matrix import cholesky, is_positive_definite
from portfolio_risk.variates import (
    AssetDistributionParams,
    PercentileAnchors,
    VariateGenerator,
    anchors_from_samples,
    bootstrap_annual_returns,
    chi_squared,
    correlation_attenuation_factor,
    correlation_inflation_factor,
    derive_distribution_params,
    estimate_tail_df,
    importance_sampled_tail_probability,
    inflate_correlation,
    percentiles_from_params,
    shared_tail_df,
    skew_adjust,
    skewed_t_transform,
)
from portfolio_risk.variates.generator import MAX_RETURN, MIN_RETURN


def two_asset_factor(rho: float) -> np.ndarray:
    return cholesky(np.array([[1.0, rho], [rho, 1.0]]))


class TestDistributionParams:
    """Tests for the percentile anchor back-solve."""

    def test_default_anchors(self) -> None:
        params = derive_distribution_params()
        assert params.mu == pytest.approx(0.079)
        assert params.sigma == pytest.approx(0.20 / 1.35)
        assert params.skew == pytest.approx(-0.01 / 0.65)
        assert params.df == 22.0

    def test_symmetric_normal_anchors_are_gaussian(self) -> None:
        """Test anchors drawn from a normal distribution give df = 30."""
        mu, sigma = 0.05, 0.1
        q = stats.norm.ppf([0.05, 0.25, 0.5, 0.75, 0.95], mu, sigma)
        params = derive_distribution_params(PercentileAnchors(*q))
        assert params.df == 30.0
        assert params.skew == pytest.approx(0.0, abs=1e-12)
        assert params.sigma == pytest.approx(sigma, rel=0.01)
        assert params.is_gaussian

    def test_wide_tails_lower_df(self) -> None:
        assert estimate_tail_df(-3.0, 3.0, 0.1) == 3.0
        assert estimate_tail_df(-0.8, 0.8, 0.1) == 6.0
        assert estimate_tail_df(-0.1, 0.1, 0.1) == 30.0
        assert estimate_tail_df(-0.5, 0.5, 0.0) == 30.0

    def test_normalized_defaults_and_clamps(self) -> None:
        params = AssetDistributionParams.normalized(
            mu=float("nan"), sigma=0.0, skew=5.0, df=1.0
        )
        assert params.mu == 0.08
        assert params.sigma == 0.01
        assert params.skew == 2.0
        assert params.df == 3.0
        assert AssetDistributionParams.normalized() == AssetDistributionParams()

    def test_from_mapping_fills_missing(self) -> None:
        anchors = PercentileAnchors.from_mapping({"p5": -0.4, "p95": None})
        assert anchors.p5 == -0.4
        assert anchors.p95 == 0.40

    def test_percentiles_from_params_ordered(self) -> None:
        a = percentiles_from_params(AssetDistributionParams(0.08, 0.2, 0.5, 6.0))
        assert a.p5 < a.p25 < a.p50 < a.p75 < a.p95

    def test_bootstrap_anchors(self) -> None:
        rng = np.random.default_rng(5)
        daily = rng.normal(0.0003, 0.01, 500)
        annual = bootstrap_annual_returns(daily, n_samples=2000, rng=rng)
        assert np.all(np.diff(annual) >= 0)
        anchors = anchors_from_samples(annual)
        assert anchors.p5 < anchors.p50 < anchors.p95
        assert bootstrap_annual_returns(daily[:10]) is None


class TestCorrelationAdjustment:
    """Tests for the copula attenuation approximation."""

    def test_attenuation_bounds(self) -> None:
        assert correlation_attenuation_factor(30.0) == 1.0
        assert correlation_attenuation_factor(2.0) == 0.5
        a5 = correlation_attenuation_factor(5.0)
        assert 0.5 <= a5 < 1.0
        assert correlation_inflation_factor(5.0) == pytest.approx(1.0 / a5)

    def test_inflate_correlation(self) -> None:
        corr = np.array([[1.0, 0.3, -0.2], [0.3, 1.0, 0.1], [-0.2, 0.1, 1.0]])
        inflated = inflate_correlation(corr, [5.0, 5.0, 30.0])
        assert abs(inflated[0, 1]) > 0.3
        assert inflated[0, 2] < -0.2
        assert_allclose(np.diag(inflated), 1.0)
        assert is_positive_definite(inflated)

    def test_inflate_gaussian_is_noop(self) -> None:
        corr = np.array([[1.0, 0.4], [0.4, 1.0]])
        assert_allclose(inflate_correlation(corr, [30.0, 30.0]), corr)

    def test_inflate_shape_mismatch(self) -> None:
        with pytest.raises(ValueError, match="doesn't match"):
            inflate_correlation(np.eye(2), [5.0])


class TestTransforms:
    """Tests for skew transforms and chi-squared draws."""

    def test_skew_adjust_zero_is_identity(self) -> None:
        z = np.linspace(-3, 3, 13)
        assert_allclose(skew_adjust(z, 0.0), z)

    def test_skew_adjust_keeps_mean_and_shifts_tail(self) -> None:
        rng = np.random.default_rng(0)
        z = rng.standard_normal(200_000)
        right = skew_adjust(z, 1.0)
        assert right.mean() == pytest.approx(0.0, abs=0.01)
        assert stats.skew(right) > 0.1
        assert stats.skew(skew_adjust(z, -1.0)) < -0.1

    def test_skewed_t_transform_stretches_tails(self) -> None:
        z = np.array([-2.0, 0.0, 2.0])
        out = skewed_t_transform(z, 0.0, 10.0)
        assert_allclose(out[1], 0.0)
        assert abs(out[2]) > 2.0

    def test_chi_squared_moments(self) -> None:
        rng = np.random.default_rng(1)
        draws = chi_squared(5.0, 100_000, rng)
        assert draws.mean() == pytest.approx(5.0, rel=0.02)
        assert draws.min() >= 0.01
        large = chi_squared(400.0, 100_000, rng)
        assert large.mean() == pytest.approx(400.0, rel=0.01)

    def test_shared_tail_df(self) -> None:
        assert shared_tail_df(np.array([30.0, 8.0, 12.0])) == 8.0
        assert shared_tail_df(np.array([0.0, 150.0])) == 10.0


class TestVariateGenerator:
    """Tests for the correlated return models."""

    def test_invalid_params_raise_error(self) -> None:
        with pytest.raises(ValueError, match="params"):
            VariateGenerator(np.eye(2), [AssetDistributionParams()])

    def test_gaussian_moments(self) -> None:
        params = [AssetDistributionParams(0.08, 0.15, 0.0, 30.0),
                  AssetDistributionParams(0.05, 0.10, 0.0, 30.0)]
        gen = VariateGenerator(two_asset_factor(0.3), params, FatTailMethod.NONE,
                               np.random.default_rng(2))
        r = gen.asset_returns(200_000)
        assert_allclose(r.mean(axis=0), [0.08, 0.05], atol=0.002)
        assert_allclose(r.std(axis=0), [0.15, 0.10], rtol=0.01)
        assert np.corrcoef(r.T)[0, 1] == pytest.approx(0.3, abs=0.01)

    def test_multivariate_t_preserves_correlation(self) -> None:
        """Test the shared chi-squared factor keeps Pearson correlation."""
        params = [AssetDistributionParams(0.0, 0.2, 0.0, 5.0)] * 2
        gen = VariateGenerator(two_asset_factor(0.5), params, FatTailMethod.MULTIVARIATE_T,
                               np.random.default_rng(3))
        assert gen.uses_shared_chi_squared
        r = gen.asset_returns(200_000)
        assert np.corrcoef(r.T)[0, 1] == pytest.approx(0.5, abs=0.02)
        assert r.std(axis=0) == pytest.approx([0.2, 0.2], rel=0.05)

    def test_per_asset_t_attenuates_correlation(self) -> None:
        """Test the Gaussian copula with t marginals lowers Pearson correlation."""
        params = [AssetDistributionParams(0.0, 0.2, 0.0, 5.0)] * 2
        gen = VariateGenerator(two_asset_factor(0.5), params, FatTailMethod.PER_ASSET_T,
                               np.random.default_rng(4))
        correlated = gen.correlated_normals(200_000)
        gaussian_corr = np.corrcoef(gen.gaussian(correlated).T)[0, 1]
        t_corr = np.corrcoef(gen.per_asset_t(correlated).T)[0, 1]
        assert t_corr < gaussian_corr - 0.005

    def test_per_asset_t_marginal_quantiles(self) -> None:
        params = [AssetDistributionParams(0.0, 1.0, 0.0, 5.0)]
        gen = VariateGenerator(np.eye(1), params, FatTailMethod.PER_ASSET_T,
                               np.random.default_rng(5))
        r = gen.asset_returns(200_000)[:, 0]
        expected = stats.t.ppf(0.95, 5) * np.sqrt(3.0 / 5.0)
        assert np.quantile(r, 0.95) == pytest.approx(expected, rel=0.02)

    def test_gaussian_assets_untouched_by_per_asset_t(self) -> None:
        params = [AssetDistributionParams(0.0, 0.2, 0.0, 30.0)] * 2
        gen = VariateGenerator(two_asset_factor(0.2), params, FatTailMethod.PER_ASSET_T)
        z = np.array([[0.5, -1.0], [2.0, 0.1]])
        assert_allclose(gen.per_asset_t(z), gen.gaussian(z))

    def test_multivariate_t_with_gaussian_df_falls_back(self) -> None:
        params = [AssetDistributionParams(0.0, 0.2, 0.0, 30.0)] * 2
        gen = VariateGenerator(two_asset_factor(0.2), params, FatTailMethod.MULTIVARIATE_T)
        assert not gen.uses_shared_chi_squared
        z = np.array([[0.5, -1.0]])
        assert_allclose(gen.multivariate_t(z), gen.gaussian(z))

    def test_explicit_chi_squared(self) -> None:
        """Test QMC-style chi-squared input scales every asset of a path together."""
        params = [AssetDistributionParams(0.0, 1.0, 0.0, 5.0)] * 2
        gen = VariateGenerator(np.eye(2), params, FatTailMethod.MULTIVARIATE_T)
        z = np.array([[1.0, 0.5]])
        out = gen.multivariate_t(z, chi2=np.array([5.0]))
        assert_allclose(out, z * np.sqrt(3.0 / 5.0))

    def test_returns_always_clamped(self) -> None:
        params = [AssetDistributionParams(5.0, 3.0, 2.0, 3.0)] * 2
        for method in FatTailMethod:
            gen = VariateGenerator(two_asset_factor(0.9), params, method,
                                   np.random.default_rng(6))
            r = gen.asset_returns(50_000)
            assert np.all(np.isfinite(r))
            assert r.min() >= MIN_RETURN
            assert r.max() <= MAX_RETURN


class TestImportanceSampling:
    """Tests for importance-sampled tail probabilities."""

    def test_matches_closed_form(self) -> None:
        w = np.array([0.6, 0.4])
        mu = np.array([0.08, 0.05])
        sigma = np.array([0.15, 0.10])
        L = two_asset_factor(0.3)
        result = importance_sampled_tail_probability(
            w, mu, sigma, L, loss_threshold=0.25, n_paths=50_000,
            rng=np.random.default_rng(8),
        )
        cov = np.array([[0.0225, 0.3 * 0.015], [0.3 * 0.015, 0.01]])
        vol = np.sqrt(w @ cov @ w)
        exact = special.ndtr((-0.25 - w @ mu) / vol)
        assert result.probability == pytest.approx(exact, rel=0.1)
        assert result.standard_error < exact * 0.05
        assert 0 < result.effective_sample_size <= 50_000
