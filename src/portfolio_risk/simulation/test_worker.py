"""
Tests for the per-unit path generator.

Progressive sizing:
- Small (n_paths=100): instant
- Medium (n_paths=20_000): well under a second
- Large (n_paths=120_000, spans several chunks): about a second
"""

import time

import numpy as np

from portfolio_risk.config import FatTailMethod
from portfolio_risk.matrix import cholesky
from portfolio_risk.simulation.worker import (
    CHUNK_SIZE,
    BatchResult,
    WorkItem,
    drawdown_estimates,
    merge_batches,
    portfolio_returns,
    run_work_item,
)
from portfolio_risk.variates import AssetDistributionParams


def make_item(n_paths=100, unit=0, start_path=0, method=FatTailMethod.NONE,
              use_qmc=False, seed=0, df=30.0):
    corr = np.array([[1.0, 0.4], [0.4, 1.0]])
    params = (
        AssetDistributionParams(0.08, 0.15, 0.0, df),
        AssetDistributionParams(0.05, 0.10, 0.0, df),
    )
    return WorkItem(
        unit=unit,
        start_path=start_path,
        n_paths=n_paths,
        cholesky_factor=cholesky(corr),
        params=params,
        adjusted_weights=np.array([0.6, 0.4]),
        cash_weight=0.0,
        cash_rate=0.0,
        annual_vol=0.12,
        fat_tail_method=method,
        seed=np.random.SeedSequence(seed),
        use_qmc=use_qmc,
        qmc_offset=1023 + start_path,
    )


# ============================================================================
# SMALL TESTS: Building blocks
# ============================================================================

def test_small_portfolio_returns_clamped():
    """Test weighted sums are clamped to [-1, 10]."""
    asset = np.array([[20.0, 20.0], [-5.0, -5.0], [0.1, 0.2]])
    r = portfolio_returns(asset, np.array([0.5, 0.5]), 0.0, 0.0)
    assert r[0] == 10.0
    assert r[1] == -1.0
    assert abs(r[2] - 0.15) < 1e-12


def test_small_cash_leg():
    """Test the cash weight earns the cash rate."""
    r = portfolio_returns(np.zeros((1, 2)), np.array([0.5, 0.5]), 0.2, 0.04)
    assert abs(r[0] - 0.008) < 1e-12


def test_small_drawdowns_bounded():
    """Test drawdown estimates stay in [0, 1] even for huge volatility."""
    dd = drawdown_estimates(5.0, 1000, np.random.default_rng(0))
    assert dd.min() >= 0.0
    assert dd.max() <= 1.0


def test_small_output_shapes():
    """Test one unit returns n_paths finite values."""
    batch = run_work_item(make_item())
    assert isinstance(batch, BatchResult)
    assert batch.terminal_returns.shape == (100,)
    assert batch.max_drawdowns.shape == (100,)
    assert np.all(np.isfinite(batch.terminal_returns))


def test_small_merge_in_unit_order():
    """Test batches are concatenated by unit index, not arrival order."""
    a = BatchResult(0, np.array([1.0]), np.array([0.1]))
    b = BatchResult(1, np.array([2.0, 3.0]), np.array([0.2, 0.3]))
    returns, drawdowns = merge_batches([b, a])
    assert list(returns) == [1.0, 2.0, 3.0]
    assert list(drawdowns) == [0.1, 0.2, 0.3]
    empty, _ = merge_batches([])
    assert empty.size == 0


# ============================================================================
# MEDIUM TESTS: Reproducibility
# ============================================================================

def test_medium_same_seed_reproduces():
    """Test an identical seed gives identical paths."""
    a = run_work_item(make_item(n_paths=20_000, seed=3))
    b = run_work_item(make_item(n_paths=20_000, seed=3))
    assert np.array_equal(a.terminal_returns, b.terminal_returns)


def test_medium_qmc_independent_of_seed():
    """Test QMC returns depend only on the sequence offset."""
    a = run_work_item(make_item(n_paths=20_000, use_qmc=True, seed=1))
    b = run_work_item(make_item(n_paths=20_000, use_qmc=True, seed=2))
    assert np.array_equal(a.terminal_returns, b.terminal_returns)
    assert not np.array_equal(a.max_drawdowns, b.max_drawdowns)


def test_medium_qmc_mean():
    """Test QMC portfolio mean is close to the weighted asset means."""
    batch = run_work_item(make_item(n_paths=20_000, use_qmc=True))
    assert abs(batch.terminal_returns.mean() - (0.6 * 0.08 + 0.4 * 0.05)) < 1e-3


# ============================================================================
# LARGE TESTS: Chunking
# ============================================================================

def test_large_spans_chunks():
    """Test a unit larger than one chunk fills every slot."""
    n = 2 * CHUNK_SIZE + 20_000
    batch = run_work_item(make_item(n_paths=n, method=FatTailMethod.MULTIVARIATE_T, df=6.0))
    assert batch.terminal_returns.shape == (n,)
    assert np.all(np.isfinite(batch.terminal_returns))
    assert abs(batch.terminal_returns.mean() - 0.068) < 0.003


def test_large_qmc_chunks_match_single_range():
    """Test chunked QMC draws equal the same index range split over two units."""
    n = CHUNK_SIZE + 10_000
    whole = run_work_item(make_item(n_paths=n, use_qmc=True))
    first = run_work_item(make_item(n_paths=30_000, use_qmc=True))
    second = run_work_item(make_item(n_paths=n - 30_000, unit=1, start_path=30_000, use_qmc=True))
    returns, _ = merge_batches([second, first])
    assert np.allclose(returns, whole.terminal_returns)


if __name__ == "__main__":
    tests = [(name, fn) for name, fn in sorted(globals().items())
             if name.startswith("test_") and callable(fn)]
    total = 0.0
    for name, fn in tests:
        start = time.time()
        fn()
        elapsed = time.time() - start
        total += elapsed
        print(f"✓ {name} [{elapsed:.3f}s]")
    print(f"{len(tests)} tests passed in {total:.2f}s")
