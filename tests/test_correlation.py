"""
Unit tests for correlation estimation and shrinkage.

Tests cover:
- Sample and EWMA estimators
- Ledoit-Wolf intensity bounds and degenerate inputs
- Constant-correlation shrinkage of a given matrix
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from portfolio_risk.correlation import (
    decay_from_half_life,
    default_shrinkage_intensity,
    ewma_correlation,
    ewma_covariance,
    half_life_from_decay,
    ledoit_wolf_shrinkage,
    sample_correlation,
    sample_covariance,
    shrink_to_constant_correlation,
    shrinkage_target,
)
from portfolio_risk.correlation.shrinkage import average_off_diagonal
from portfolio_risk.matrix import is_positive_definite


@pytest.fixture
def correlated_returns() -> np.ndarray:
    """250 days of three correlated daily returns."""
    rng = np.random.default_rng(42)
    corr = np.array([[1.0, 0.6, 0.2], [0.6, 1.0, 0.3], [0.2, 0.3, 1.0]])
    L = np.linalg.cholesky(corr)
    return 0.01 * rng.standard_normal((250, 3)) @ L.T


class TestEstimators:
    """Tests for sample and EWMA estimators."""

    def test_sample_matches_numpy(self, correlated_returns: np.ndarray) -> None:
        assert_allclose(sample_covariance(correlated_returns), np.cov(correlated_returns.T))
        assert_allclose(
            sample_correlation(correlated_returns),
            np.corrcoef(correlated_returns.T),
            atol=1e-12,
        )

    def test_single_observation_correlation_is_identity(self) -> None:
        assert_allclose(sample_correlation(np.ones((1, 3))), np.eye(3))

    def test_constant_asset_has_zero_correlation(self) -> None:
        rng = np.random.default_rng(0)
        R = np.column_stack([rng.standard_normal(50), np.zeros(50)])
        corr = sample_correlation(R)
        assert corr[0, 1] == 0.0
        assert corr[1, 1] == 1.0

    def test_half_life_decay_round_trip(self) -> None:
        lam = decay_from_half_life(30)
        assert 0.5 ** (1 / 30) == pytest.approx(lam)
        assert half_life_from_decay(lam) == pytest.approx(30)

    def test_invalid_half_life(self) -> None:
        with pytest.raises(ValueError, match="half_life"):
            decay_from_half_life(0)

    def test_ewma_weights_recent_observations(self) -> None:
        """Test a regime change late in the sample dominates EWMA correlation."""
        rng = np.random.default_rng(1)
        early = rng.standard_normal((400, 2))
        common = rng.standard_normal(100)
        late = np.column_stack([common, common + 0.1 * rng.standard_normal(100)])
        R = np.vstack([early, late])
        assert ewma_correlation(R, half_life=20)[0, 1] > sample_correlation(R)[0, 1]

    def test_ewma_covariance_symmetric(self, correlated_returns: np.ndarray) -> None:
        cov = ewma_covariance(correlated_returns)
        assert_allclose(cov, cov.T)
        assert np.all(np.diag(cov) > 0)


class TestLedoitWolf:
    """Tests for Ledoit-Wolf shrinkage."""

    def test_intensity_in_unit_interval(self, correlated_returns: np.ndarray) -> None:
        result = ledoit_wolf_shrinkage(correlated_returns)
        assert 0.0 <= result.shrinkage_intensity <= 1.0
        assert is_positive_definite(result.correlation)
        assert_allclose(np.diag(result.correlation), 1.0)

    def test_shrunk_correlation_between_sample_and_target(
        self, correlated_returns: np.ndarray
    ) -> None:
        """Test every entry lies between the sample value and r̄."""
        result = ledoit_wolf_shrinkage(correlated_returns)
        sample = sample_correlation(correlated_returns)
        r_bar = result.average_correlation
        iu = np.triu_indices(3, k=1)
        lo = np.minimum(sample[iu], r_bar) - 1e-6
        hi = np.maximum(sample[iu], r_bar) + 1e-6
        assert np.all((result.correlation[iu] >= lo) & (result.correlation[iu] <= hi))

    def test_ewma_variant(self, correlated_returns: np.ndarray) -> None:
        result = ledoit_wolf_shrinkage(correlated_returns, half_life=60)
        assert 0.0 <= result.shrinkage_intensity <= 1.0
        assert result.covariance.shape == (3, 3)

    def test_degenerate_history(self) -> None:
        """Test fewer than two observations gives the default result."""
        result = ledoit_wolf_shrinkage(np.zeros((1, 3)))
        assert_allclose(result.covariance, 0.04 * np.eye(3))
        assert_allclose(result.correlation, np.eye(3))
        assert result.shrinkage_intensity == 1.0
        assert result.average_correlation == 0.0

    def test_wrong_rank_raises(self) -> None:
        with pytest.raises(ValueError, match="shape"):
            ledoit_wolf_shrinkage(np.zeros(10))


class TestConstantCorrelationShrinkage:
    """Tests for shrinking a correlation matrix directly."""

    corr = np.array([[1.0, 0.8, 0.1], [0.8, 1.0, 0.3], [0.1, 0.3, 1.0]])

    def test_zero_intensity_is_identity_map(self) -> None:
        result = shrink_to_constant_correlation(self.corr, intensity=0.0)
        assert_allclose(result.correlation, self.corr)
        assert result.covariance is None

    def test_full_intensity_is_target(self) -> None:
        result = shrink_to_constant_correlation(self.corr, intensity=1.0)
        assert_allclose(result.correlation, shrinkage_target(self.corr))
        assert result.average_correlation == pytest.approx(0.4)

    def test_default_intensity(self) -> None:
        assert default_shrinkage_intensity(3) == pytest.approx(0.13)
        assert default_shrinkage_intensity(100) == 0.5
        result = shrink_to_constant_correlation(self.corr)
        assert result.shrinkage_intensity == pytest.approx(0.13)

    def test_invalid_intensity(self) -> None:
        with pytest.raises(ValueError, match="intensity"):
            shrink_to_constant_correlation(self.corr, intensity=1.5)

    def test_average_off_diagonal_single_asset(self) -> None:
        assert average_off_diagonal(np.eye(1)) == 0.0
