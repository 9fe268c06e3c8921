"""
Unit tests for low-discrepancy sequences and the inverse-CDF bridge.

Tests cover:
- Sobol points, Gray-code stepping and direct index access
- Halton radical inverses
- Inverse normal and chi-squared CDFs
- Discrepancy and convergence against pseudo-random sampling
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose
from scipy import special, stats

from portfolio_risk.qmc import (
    MAX_DIMENSIONS,
    HaltonSequence,
    SobolSequence,
    create_sequence,
    direction_numbers,
    first_primes,
    halton_value,
    inverse_chi_squared_cdf,
    inverse_normal_cdf,
    qmc_multivariate_t_inputs,
    qmc_normals,
    star_discrepancy_estimate,
    uniform_to_normal,
)
from portfolio_risk.qmc.sobol import SCALE


class TestSobolSequence:
    """Tests for the Sobol generator."""

    def test_first_dimension_is_van_der_corput(self) -> None:
        """Test dimension 0 in Gray-code order."""
        seq = SobolSequence(1)
        values = [seq.next()[0] for _ in range(8)]
        expected = [0.5 / SCALE, 0.5, 0.75, 0.25, 0.375, 0.875, 0.625, 0.125]
        assert_allclose(values, expected)

    def test_second_dimension_first_points(self) -> None:
        pts = SobolSequence(2).points_at(1, 3)
        assert_allclose(pts[:, 1], [0.5, 0.75, 0.25])

    def test_stratification_every_dimension(self) -> None:
        """Test the first 2^k points hit every interval of width 2^-k once."""
        k = 10
        pts = SobolSequence(MAX_DIMENSIONS).points_at(0, 2 ** k)
        for d in range(MAX_DIMENSIONS):
            cells = np.floor(pts[:, d] * 2 ** k).astype(int)
            assert len(np.unique(cells)) == 2 ** k, f"dimension {d}"

    def test_next_matches_points_at(self) -> None:
        """Test Gray-code stepping agrees with direct index evaluation."""
        seq = SobolSequence(5)
        stepped = np.array([seq.next() for _ in range(100)])
        assert_allclose(stepped, SobolSequence(5).points_at(0, 100))

    def test_skip_to_positions_next(self) -> None:
        """Test next() after skip_to(i) returns point i."""
        seq = SobolSequence(3)
        seq.skip_to(1023)
        assert_allclose(seq.next(), seq.points_at(1023, 1)[0])
        assert seq.count == 1024

    def test_skip_in_constructor(self) -> None:
        seq = SobolSequence(3, skip=7)
        assert_allclose(seq.points(4), SobolSequence(3).points_at(7, 4))
        assert seq.count == 11

    def test_points_at_does_not_advance(self) -> None:
        seq = SobolSequence(2)
        seq.points_at(100, 10)
        assert seq.count == 0

    def test_slices_reassemble(self) -> None:
        """Test disjoint index ranges concatenate to the contiguous range."""
        seq = SobolSequence(4)
        whole = seq.points_at(1023, 300)
        parts = np.vstack([seq.points_at(1023, 120), seq.points_at(1143, 180)])
        assert_allclose(parts, whole)

    def test_too_many_dimensions_raise_error(self) -> None:
        with pytest.raises(ValueError, match="dimensions"):
            SobolSequence(MAX_DIMENSIONS + 1)

    def test_reset(self) -> None:
        seq = SobolSequence(2)
        first = seq.next()
        seq.points(10)
        seq.reset()
        assert_allclose(seq.next(), first)

    def test_direction_table_is_read_only(self) -> None:
        V = direction_numbers()
        assert V.shape == (MAX_DIMENSIONS, 31)
        assert direction_numbers() is V
        with pytest.raises(ValueError):
            V[0, 1] = 0


class TestHaltonSequence:
    """Tests for the Halton generator."""

    def test_bases(self) -> None:
        assert first_primes(5) == [2, 3, 5, 7, 11]
        assert first_primes(25)[-1] == 97

    def test_radical_inverse(self) -> None:
        assert halton_value(1, 2) == 0.5
        assert halton_value(3, 2) == 0.75
        assert halton_value(1, 3) == pytest.approx(1 / 3)
        assert halton_value(4, 3) == pytest.approx(4 / 9)

    def test_points(self) -> None:
        seq = HaltonSequence(2)
        pts = seq.points(4)
        assert_allclose(pts[:, 0], [0.0, 0.5, 0.25, 0.75])
        assert_allclose(pts[:, 1], [0.0, 1 / 3, 2 / 3, 1 / 9])
        assert seq.count == 4

    def test_next_and_skip(self) -> None:
        seq = HaltonSequence(3, skip=20)
        assert_allclose(seq.next(), seq.points_at(20, 1)[0])

    def test_create_sequence_falls_back_to_halton(self) -> None:
        """Test Sobol requests beyond the table size get a Halton sequence."""
        seq = create_sequence("sobol", MAX_DIMENSIONS + 4)
        assert isinstance(seq, HaltonSequence)
        assert seq.dimensions == MAX_DIMENSIONS + 4
        assert isinstance(create_sequence("sobol", 3), SobolSequence)

    def test_unknown_sequence(self) -> None:
        with pytest.raises(ValueError, match="Unknown sequence"):
            create_sequence("niederreiter", 2)


class TestInverseCDFs:
    """Tests for the inverse-CDF transforms."""

    def test_inverse_normal_matches_scipy(self) -> None:
        p = np.concatenate([
            np.array([1e-9, 1e-5, 0.001, 0.02, 0.02425]),
            np.linspace(0.03, 0.97, 95),
            np.array([0.98, 0.999, 1 - 1e-7]),
        ])
        assert_allclose(inverse_normal_cdf(p), special.ndtri(p), rtol=1e-8, atol=1e-8)

    def test_inverse_normal_limits(self) -> None:
        out = inverse_normal_cdf(np.array([0.0, 0.5, 1.0]))
        assert out[0] == -np.inf
        assert out[1] == pytest.approx(0.0, abs=1e-12)
        assert out[2] == np.inf

    def test_inverse_normal_scalar_shape(self) -> None:
        assert np.shape(inverse_normal_cdf(0.975)) == ()
        assert float(inverse_normal_cdf(0.975)) == pytest.approx(1.959964, abs=1e-6)

    def test_uniform_to_normal_is_finite(self) -> None:
        z = uniform_to_normal(np.array([0.0, 1.0]))
        assert np.all(np.isfinite(z))
        assert z[0] == pytest.approx(special.ndtri(1e-10), rel=1e-6)

    @pytest.mark.parametrize("df", [5.0, 10.0, 30.0])
    def test_chi_squared_quantile_close_to_exact(self, df: float) -> None:
        u = np.linspace(0.05, 0.95, 19)
        assert_allclose(inverse_chi_squared_cdf(u, df), stats.chi2.ppf(u, df), rtol=0.03)

    @pytest.mark.parametrize("df", [3.0, 4.0])
    def test_chi_squared_quantile_exact_at_small_df(self, df: float) -> None:
        u = np.linspace(0.01, 0.99, 99)
        assert_allclose(inverse_chi_squared_cdf(u, df), stats.chi2.ppf(u, df), rtol=1e-8)

    def test_inverse_chi_squared_moment_at_small_df(self) -> None:
        """Test E[df/χ²] over a fine midpoint grid is df/(df - 2)."""
        n = 200_000
        u = (np.arange(n) + 0.5) / n
        chi2 = inverse_chi_squared_cdf(u, 4.0)
        assert np.mean(4.0 / chi2) == pytest.approx(2.0, rel=0.01)

    def test_chi_squared_quantile_edges(self) -> None:
        out = inverse_chi_squared_cdf(np.array([0.0, 1e-12, 1.0]), 3.0)
        assert out[0] == 0.0
        assert out[1] >= 0.001
        assert out[2] == np.inf

    def test_chi_squared_invalid_df(self) -> None:
        with pytest.raises(ValueError, match="df"):
            inverse_chi_squared_cdf(np.array([0.5]), 0.0)


class TestQMCInputs:
    """Tests for mapping sequence points to simulation inputs."""

    def test_qmc_normals_shape_and_moments(self) -> None:
        seq = SobolSequence(3)
        z = qmc_normals(seq, 1023, 4096, 3)
        assert z.shape == (4096, 3)
        assert_allclose(z.mean(axis=0), 0.0, atol=0.01)
        assert_allclose(z.std(axis=0), 1.0, atol=0.02)

    def test_multivariate_t_inputs_need_extra_dimension(self) -> None:
        with pytest.raises(ValueError, match="dimensions"):
            qmc_multivariate_t_inputs(SobolSequence(2), 0, 10, 2, 5.0)

    def test_multivariate_t_inputs(self) -> None:
        z, chi2 = qmc_multivariate_t_inputs(SobolSequence(3), 1023, 2048, 2, 5.0)
        assert z.shape == (2048, 2)
        assert chi2.shape == (2048,)
        assert np.all(chi2 > 0)
        assert chi2.mean() == pytest.approx(5.0, rel=0.05)


class TestConvergence:
    """QMC against pseudo-random sampling at equal path counts."""

    def test_discrepancy_lower_than_random(self) -> None:
        rng = np.random.default_rng(3)
        sobol = SobolSequence(2).points_at(1, 1024)
        random = rng.random((1024, 2))
        assert star_discrepancy_estimate(sobol) < star_discrepancy_estimate(random)

    def test_discrepancy_rejects_empty(self) -> None:
        with pytest.raises(ValueError, match="shape"):
            star_discrepancy_estimate(np.empty((0, 2)))

    def test_percentile_error_smaller_than_monte_carlo(self) -> None:
        """Test the 5th percentile of a one-asset return converges faster."""
        mu, sigma, n = 0.08, 0.20, 4096
        k = int(np.floor(n * 0.05))
        exact = mu + sigma * special.ndtri(0.05)

        z_qmc = qmc_normals(SobolSequence(1), 1023, n, 1)[:, 0]
        qmc_error = abs(np.sort(mu + sigma * z_qmc)[k] - exact)

        rng = np.random.default_rng(11)
        mc_errors = [
            np.sort(mu + sigma * rng.standard_normal(n))[k] - exact for _ in range(30)
        ]
        mc_rmse = float(np.sqrt(np.mean(np.square(mc_errors))))

        assert qmc_error < mc_rmse / 2
