"""
Matrix kernel for correlation and covariance handling.

Every other component factorizes a correlation matrix before drawing
correlated variates, so the routines here favour robustness over exactness:

    - ``cholesky`` never fails on a square input; non-positive pivots are
      clamped to a small floor instead of raising.
    - ``repair`` always terminates and always returns a matrix that passes
      ``is_positive_definite``.

Mathematical background:
    A valid correlation matrix C is symmetric, has unit diagonal, entries in
    [-1, 1] and is positive (semi-)definite. Its Cholesky factor L satisfies

        C = L L^T,   L lower triangular

    so for z ~ N(0, I), the vector L z has correlation C.

    Covariance and correlation are related through the volatilities σ:

        Σ = diag(σ) C diag(σ)
"""

import logging
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)


# Value assigned to a diagonal entry of L when its pivot is not positive
PIVOT_FLOOR = 1e-4

# Off-diagonal clamp applied by repair
MAX_ABS_CORRELATION = 0.999


def _as_square(matrix: NDArray[np.float64], name: str = "matrix") -> NDArray[np.float64]:
    """Convert to a float64 array and check it is square."""
    arr = np.array(matrix, dtype=np.float64, copy=True)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValueError(f"{name} must be square. Got shape {arr.shape}")
    return arr


def cholesky(
    matrix: NDArray[np.float64],
    floor: float = PIVOT_FLOOR
) -> NDArray[np.float64]:
    """
    Cholesky factor with clamped pivots.

    Computes lower-triangular L with L L^T ≈ matrix. When a pivot
    a_jj - Σ_k L_jk² is not positive (or not finite) the diagonal entry is
    set to ``floor`` rather than raising, so the result may not reproduce a
    matrix that was not positive definite. Use ``is_positive_definite`` to
    check the input first when exactness matters.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Symmetric matrix, shape (N, N)
    floor : float
        Replacement for a non-positive diagonal entry of L

    Returns
    -------
    NDArray[np.float64]
        Lower-triangular factor L, shape (N, N)
    """
    A = _as_square(matrix)
    n = A.shape[0]
    L = np.zeros((n, n), dtype=np.float64)

    for i in range(n):
        for j in range(i + 1):
            s = float(np.dot(L[i, :j], L[j, :j]))
            if i == j:
                pivot = A[i, i] - s
                L[i, i] = np.sqrt(pivot) if pivot > 0 and np.isfinite(pivot) else floor
            else:
                L[i, j] = (A[i, j] - s) / L[j, j] if L[j, j] != 0 else 0.0

    return L


def is_positive_definite(matrix: NDArray[np.float64]) -> bool:
    """
    Check strict positive definiteness via an unclamped Cholesky.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Square matrix

    Returns
    -------
    bool
        True if every entry is finite and the factorization succeeds.
    """
    A = np.asarray(matrix, dtype=np.float64)
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        return False
    if not np.all(np.isfinite(A)):
        return False
    try:
        np.linalg.cholesky(A)
    except np.linalg.LinAlgError:
        return False
    return True


def repair(
    matrix: NDArray[np.float64],
    max_iterations: int = 50,
    shrink_factor: float = 0.95
) -> NDArray[np.float64]:
    """
    Make a correlation matrix valid for factorization.

    Steps:
        1. Symmetrize by averaging (i, j) and (j, i); non-finite entries -> 0
        2. Clamp off-diagonals to [-0.999, 0.999]
        3. Force the diagonal to 1
        4. Multiply all off-diagonals by ``shrink_factor`` until positive
           definite, for at most ``max_iterations`` passes

    This is a coarse, always-terminating repair, not a nearest-correlation
    projection (see ``nearest_correlation_matrix`` for that). If the pass
    budget runs out the identity is returned.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Candidate correlation matrix, shape (N, N)
    max_iterations : int
        Maximum number of shrink passes
    shrink_factor : float
        Multiplier applied to off-diagonals on each pass

    Returns
    -------
    NDArray[np.float64]
        Symmetric, unit-diagonal, positive definite matrix
    """
    A = _as_square(matrix)
    n = A.shape[0]

    A[~np.isfinite(A)] = 0.0
    result = np.clip(0.5 * (A + A.T), -MAX_ABS_CORRELATION, MAX_ABS_CORRELATION)
    np.fill_diagonal(result, 1.0)

    off_diag = ~np.eye(n, dtype=bool)
    for iteration in range(max_iterations):
        if is_positive_definite(result):
            if iteration > 0:
                logger.debug("Correlation repaired after %d shrink passes", iteration)
            return result
        result[off_diag] *= shrink_factor

    if is_positive_definite(result):
        return result

    logger.warning(
        "Correlation matrix not positive definite after %d shrink passes; "
        "falling back to identity",
        max_iterations,
    )
    return np.eye(n)


# Name used by the correlation tab of the application
make_valid_correlation = repair


def nearest_psd(
    matrix: NDArray[np.float64],
    min_eigenvalue: float = 1e-8
) -> NDArray[np.float64]:
    """
    Project onto the positive semi-definite cone by eigenvalue clipping.

    Negative eigenvalues are raised to ``min_eigenvalue`` and the result is
    rescaled to unit diagonal.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Symmetric matrix, shape (N, N)
    min_eigenvalue : float
        Eigenvalue floor

    Returns
    -------
    NDArray[np.float64]
        Correlation matrix with all eigenvalues >= roughly ``min_eigenvalue``
    """
    A = _as_square(matrix)
    A = 0.5 * (A + A.T)
    eigenvalues, eigenvectors = np.linalg.eigh(A)
    eigenvalues = np.maximum(eigenvalues, min_eigenvalue)

    psd = eigenvectors @ np.diag(eigenvalues) @ eigenvectors.T

    # Normalize to unit diagonal
    d = np.sqrt(np.diag(psd))
    psd = psd / np.outer(d, d)
    psd = 0.5 * (psd + psd.T)
    np.fill_diagonal(psd, 1.0)
    return psd


def nearest_correlation_matrix(
    matrix: NDArray[np.float64],
    max_iterations: int = 100,
    tol: float = 1e-7
) -> NDArray[np.float64]:
    """
    Nearest correlation matrix by alternating projections (Higham, 2002).

    Alternates between the PSD cone (eigenvalue clipping) and the set of
    unit-diagonal matrices, with Dykstra's correction. Preserves more of the
    input structure than ``repair`` at the cost of an eigendecomposition per
    iteration. The result is passed through ``repair`` so it always
    factorizes.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Candidate correlation matrix
    max_iterations : int
        Maximum number of projection rounds
    tol : float
        Convergence tolerance on the max-abs change between projections

    Returns
    -------
    NDArray[np.float64]
        Valid correlation matrix
    """
    A = _as_square(matrix)
    A[~np.isfinite(A)] = 0.0
    Y = 0.5 * (A + A.T)
    dS = np.zeros_like(Y)

    for _ in range(max_iterations):
        R = Y - dS
        eigenvalues, eigenvectors = np.linalg.eigh(R)
        X = eigenvectors @ np.diag(np.maximum(eigenvalues, 0.0)) @ eigenvectors.T
        dS = X - R
        Y = X.copy()
        np.fill_diagonal(Y, 1.0)
        if np.max(np.abs(X - Y)) < tol:
            break

    return repair(Y)


def matmul(A: NDArray[np.float64], B: NDArray[np.float64]) -> NDArray[np.float64]:
    """Matrix product with an explicit inner-dimension check."""
    A = np.asarray(A, dtype=np.float64)
    B = np.asarray(B, dtype=np.float64)
    if A.shape[-1] != B.shape[0]:
        raise ValueError(f"Cannot multiply shapes {A.shape} and {B.shape}")
    return A @ B


def transpose(A: NDArray[np.float64]) -> NDArray[np.float64]:
    """Matrix transpose."""
    return np.asarray(A, dtype=np.float64).T.copy()


def correlation_to_covariance(
    correlation: NDArray[np.float64],
    volatilities: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Build Σ = diag(σ) C diag(σ).

    Parameters
    ----------
    correlation : NDArray[np.float64]
        Correlation matrix C, shape (N, N)
    volatilities : NDArray[np.float64]
        Volatilities σ, shape (N,)

    Returns
    -------
    NDArray[np.float64]
        Covariance matrix, shape (N, N)
    """
    C = _as_square(correlation, "correlation")
    vols = np.asarray(volatilities, dtype=np.float64)
    if vols.shape != (C.shape[0],):
        raise ValueError(
            f"volatilities shape {vols.shape} doesn't match correlation {C.shape}"
        )
    return C * np.outer(vols, vols)


def covariance_to_correlation(
    covariance: NDArray[np.float64]
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Split a covariance matrix into correlation and volatilities.

    Assets with zero (or negative) variance get correlation 0 with every
    other asset and 1 with themselves.

    Returns
    -------
    correlation : NDArray[np.float64]
        Correlation matrix, shape (N, N)
    volatilities : NDArray[np.float64]
        Volatilities, shape (N,)
    """
    S = _as_square(covariance, "covariance")
    vols = np.sqrt(np.maximum(np.diag(S), 0.0))
    denom = np.outer(vols, vols)

    with np.errstate(divide="ignore", invalid="ignore"):
        corr = np.where(denom > 0, S / np.where(denom > 0, denom, 1.0), 0.0)
    corr = np.clip(corr, -1.0, 1.0)
    np.fill_diagonal(corr, 1.0)
    return corr, vols
