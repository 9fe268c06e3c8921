"""
Sobol low-discrepancy sequence.

Bratley & Fox (1988), with primitive polynomials and initial direction
numbers from Joe & Kuo (2008). Points are 30-bit binary fractions:

    x_i = (g_1 v_1) XOR (g_2 v_2) XOR ... ,   g = i XOR (i >> 1)

where g is the Gray code of the index and v_k the direction numbers of a
dimension. Successive points differ by a single XOR, and any index can be
reached directly from its Gray code, so parallel units can each claim a
disjoint, reproducible slice of the sequence.

Index 0 (the origin) is mapped to 0.5 / 2^30 so that the inverse normal
CDF stays finite.
"""

from functools import lru_cache
from typing import Optional

import numpy as np
from numpy.typing import NDArray


MAX_BITS = 30
SCALE = float(2 ** MAX_BITS)

# (degree s, polynomial coefficients a, initial direction numbers m).
# The first entry is the van der Corput dimension and is handled separately.
_DIRECTION_TABLE = (
    (1, 0, (1,)),
    (2, 1, (1, 1)),
    (3, 1, (1, 3, 1)),
    (3, 2, (1, 1, 1)),
    (4, 1, (1, 1, 3, 3)),
    (4, 4, (1, 3, 5, 13)),
    (5, 2, (1, 1, 5, 5, 17)),
    (5, 4, (1, 1, 5, 5, 5)),
    (5, 7, (1, 1, 7, 11, 19)),
    (5, 11, (1, 1, 5, 1, 1)),
    (5, 13, (1, 1, 1, 3, 11)),
    (5, 14, (1, 3, 5, 5, 31)),
    (6, 1, (1, 3, 3, 9, 7, 49)),
    (6, 13, (1, 1, 1, 15, 21, 21)),
    (6, 16, (1, 3, 1, 13, 27, 49)),
    (6, 19, (1, 1, 1, 15, 7, 5)),
    (6, 22, (1, 3, 1, 3, 29, 31)),
    (6, 25, (1, 1, 5, 5, 21, 11)),
    (7, 1, (1, 3, 5, 15, 17, 63, 13)),
    (7, 4, (1, 1, 5, 5, 1, 27, 33)),
    (7, 7, (1, 3, 3, 3, 25, 17, 115)),
)

MAX_DIMENSIONS = len(_DIRECTION_TABLE)


@lru_cache(maxsize=None)
def direction_numbers() -> NDArray[np.uint64]:
    """
    Direction numbers for all supported dimensions.

    Built once per process and returned read-only.

    Returns
    -------
    NDArray[np.uint64]
        V[j, k] for dimension j and bit k = 1..30, shape (21, 31).
        Column 0 is unused.
    """
    V = np.zeros((MAX_DIMENSIONS, MAX_BITS + 1), dtype=np.uint64)

    for k in range(1, MAX_BITS + 1):
        V[0, k] = 1 << (MAX_BITS - k)

    for j in range(1, MAX_DIMENSIONS):
        s, a, m = _DIRECTION_TABLE[j]
        v = [0] * (MAX_BITS + 1)
        for k in range(1, s + 1):
            v[k] = m[k - 1] << (MAX_BITS - k)
        for k in range(s + 1, MAX_BITS + 1):
            v[k] = v[k - s] ^ (v[k - s] >> s)
            for i in range(1, s):
                if (a >> (s - 1 - i)) & 1:
                    v[k] ^= v[k - i]
        V[j, :] = v

    V.flags.writeable = False
    return V


def _rightmost_zero_bit(n: int) -> int:
    """1-based position of the lowest zero bit of n."""
    position = 1
    while n & 1:
        n >>= 1
        position += 1
    return position


class SobolSequence:
    """
    Sobol sequence generator in up to 21 dimensions.

    Attributes
    ----------
    dimensions : int
        Number of coordinates per point
    count : int
        Index of the point ``next`` returns
    """

    def __init__(self, dimensions: int, skip: int = 0) -> None:
        """
        Initialize the generator.

        Parameters
        ----------
        dimensions : int
            Number of dimensions, 1..21
        skip : int
            Number of initial points to discard. 2^k - 1 is customary.
        """
        if not 1 <= dimensions <= MAX_DIMENSIONS:
            raise ValueError(
                f"Sobol sequence supports 1-{MAX_DIMENSIONS} dimensions. Got {dimensions}"
            )
        if skip < 0:
            raise ValueError(f"skip must be non-negative. Got {skip}")

        self.dimensions = dimensions
        self._v = direction_numbers()[:dimensions]
        self._state = np.zeros(dimensions, dtype=np.uint64)
        self.count = 0
        self.skip_to(skip)

    def _state_at(self, index: int) -> NDArray[np.uint64]:
        gray = index ^ (index >> 1)
        state = np.zeros(self.dimensions, dtype=np.uint64)
        k = 1
        while gray and k <= MAX_BITS:
            if gray & 1:
                state ^= self._v[:, k]
            gray >>= 1
            k += 1
        return state

    def skip_to(self, index: int) -> None:
        """Position the generator so that ``next`` returns point ``index``."""
        if index < 0:
            raise ValueError(f"index must be non-negative. Got {index}")
        self._state = self._state_at(index - 1) if index > 0 else np.zeros(
            self.dimensions, dtype=np.uint64
        )
        self.count = index

    def reset(self) -> None:
        self.skip_to(0)

    def next(self) -> NDArray[np.float64]:
        """Next point in [0, 1)^d (Gray-code increment)."""
        if self.count == 0:
            self._state[:] = 0
            point = np.full(self.dimensions, 0.5 / SCALE)
        else:
            self._state ^= self._v[:, _rightmost_zero_bit(self.count - 1)]
            point = self._state / SCALE
        self.count += 1
        return point

    def points_at(self, start: int, n: int) -> NDArray[np.float64]:
        """
        Points ``start`` .. ``start + n - 1`` computed directly from their index.

        Does not move the generator.

        Returns
        -------
        NDArray[np.float64]
            Points, shape (n, dimensions)
        """
        if start < 0 or n < 0:
            raise ValueError(f"start and n must be non-negative. Got {start}, {n}")

        idx = np.arange(start, start + n, dtype=np.uint64)
        gray = idx ^ (idx >> np.uint64(1))
        state = np.zeros((n, self.dimensions), dtype=np.uint64)

        for k in range(MAX_BITS):
            bit = ((gray >> np.uint64(k)) & np.uint64(1)).astype(bool)
            if np.any(bit):
                state[bit] ^= self._v[:, k + 1]

        points = state / SCALE
        points[idx == 0] = 0.5 / SCALE
        return points

    def points(self, n: int) -> NDArray[np.float64]:
        """Next ``n`` points, shape (n, dimensions); advances the generator."""
        start = self.count
        result = self.points_at(start, n)
        self.skip_to(start + n)
        return result

    def __repr__(self) -> str:
        """String representation."""
        return f"SobolSequence(dimensions={self.dimensions}, count={self.count})"


def sobol_points(
    dimensions: int,
    n: int,
    skip: int = 0,
    start: Optional[int] = None
) -> NDArray[np.float64]:
    """Convenience wrapper: ``n`` Sobol points from index ``skip`` (+ ``start``)."""
    seq = SobolSequence(dimensions)
    return seq.points_at(skip + (start or 0), n)
