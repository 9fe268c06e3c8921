"""
Halton low-discrepancy sequence.

Coordinate j of point i is the radical inverse of i in the j-th prime base:

    φ_b(i) = Σ_k d_k b^-(k+1),   i = Σ_k d_k b^k

Simpler than Sobol and unbounded in dimension, but projections onto pairs
of high-dimension coordinates are visibly correlated, so it is used as the
secondary sequence.
"""

from typing import List

import numpy as np
from numpy.typing import NDArray


FIRST_PRIMES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59, 61, 67, 71, 73)


def first_primes(n: int) -> List[int]:
    """First ``n`` primes."""
    primes = list(FIRST_PRIMES[:n])
    candidate = primes[-1] + 2 if primes else 2
    while len(primes) < n:
        if all(candidate % p for p in primes if p * p <= candidate):
            primes.append(candidate)
        candidate += 1 if candidate == 2 else 2
    return primes


def radical_inverse(index: NDArray[np.int64], base: int) -> NDArray[np.float64]:
    """Radical inverse of each index in ``base``; vectorized over ``index``."""
    i = np.array(index, dtype=np.int64, copy=True)
    result = np.zeros(i.shape, dtype=np.float64)
    f = 1.0 / base
    while np.any(i > 0):
        result += f * (i % base)
        i //= base
        f /= base
    return result


def halton_value(index: int, base: int) -> float:
    """Radical inverse of a single index."""
    return float(radical_inverse(np.array([index]), base)[0])


class HaltonSequence:
    """
    Halton sequence generator.

    Attributes
    ----------
    dimensions : int
        Number of coordinates per point
    bases : List[int]
        Prime base of each coordinate
    count : int
        Index of the point ``next`` returns
    """

    def __init__(self, dimensions: int, skip: int = 0) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be positive. Got {dimensions}")
        if skip < 0:
            raise ValueError(f"skip must be non-negative. Got {skip}")
        self.dimensions = dimensions
        self.bases = first_primes(dimensions)
        self.count = skip

    def skip_to(self, index: int) -> None:
        if index < 0:
            raise ValueError(f"index must be non-negative. Got {index}")
        self.count = index

    def reset(self) -> None:
        self.count = 0

    def points_at(self, start: int, n: int) -> NDArray[np.float64]:
        """Points ``start`` .. ``start + n - 1``, shape (n, dimensions)."""
        if start < 0 or n < 0:
            raise ValueError(f"start and n must be non-negative. Got {start}, {n}")
        idx = np.arange(start, start + n, dtype=np.int64)
        return np.column_stack([radical_inverse(idx, b) for b in self.bases]).reshape(
            n, self.dimensions
        )

    def next(self) -> NDArray[np.float64]:
        point = self.points_at(self.count, 1)[0]
        self.count += 1
        return point

    def points(self, n: int) -> NDArray[np.float64]:
        result = self.points_at(self.count, n)
        self.count += n
        return result

    def __repr__(self) -> str:
        """String representation."""
        return f"HaltonSequence(dimensions={self.dimensions}, count={self.count})"
