"""
Simulation result records and the statistics derived from terminal returns.

Percentiles use the floor-index rule on the sorted sample,

    P(p) = sorted[min(floor(n p), n - 1)]

so reported values are always realised path outcomes.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.risk.decomposition import portfolio_volatility


TERMINAL_LEVELS: Tuple[Tuple[str, float], ...] = (
    ("p5", 0.05),
    ("p10", 0.10),
    ("p25", 0.25),
    ("p50", 0.50),
    ("p75", 0.75),
    ("p90", 0.90),
    ("p95", 0.95),
)

DRAWDOWN_LEVELS: Tuple[Tuple[str, float], ...] = (
    ("p50", 0.50),
    ("p75", 0.75),
    ("p90", 0.90),
    ("p95", 0.95),
    ("p99", 0.99),
)

# Fixed loss thresholds reported in every result
LOSS_THRESHOLDS = (0.10, 0.20, 0.30)

INVALID_PATHS_ERROR = "Simulation produced too many invalid results."


def percentile(sorted_values: NDArray[np.float64], p: float) -> float:
    """Floor-index percentile of an ascending array."""
    n = len(sorted_values)
    if n == 0:
        raise ValueError("Cannot take a percentile of an empty sample")
    return float(sorted_values[min(int(math.floor(n * p)), n - 1)])


@dataclass(frozen=True)
class PercentileLadder:
    """Terminal-return percentiles and mean."""

    p5: float
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    p95: float
    mean: float

    @classmethod
    def from_sorted(cls, sorted_values: NDArray[np.float64]) -> "PercentileLadder":
        values = {name: percentile(sorted_values, p) for name, p in TERMINAL_LEVELS}
        return cls(mean=float(np.mean(sorted_values)), **values)

    def points(self) -> List[Tuple[float, float]]:
        """(probability level, value) pairs in ascending level order."""
        return [(p, getattr(self, name)) for name, p in TERMINAL_LEVELS]

    def to_dollars(self, starting_value: float) -> "PercentileLadder":
        """The same ladder expressed as terminal dollar values."""
        values = {
            name: starting_value * (1.0 + getattr(self, name)) for name, _ in TERMINAL_LEVELS
        }
        return PercentileLadder(mean=starting_value * (1.0 + self.mean), **values)

    def to_dict(self) -> Dict[str, float]:
        out = {name: getattr(self, name) for name, _ in TERMINAL_LEVELS}
        out["mean"] = self.mean
        return out


@dataclass(frozen=True)
class DrawdownLadder:
    """Percentiles of the per-path max-drawdown estimate."""

    p50: float
    p75: float
    p90: float
    p95: float
    p99: float

    @classmethod
    def from_sorted(cls, sorted_values: NDArray[np.float64]) -> "DrawdownLadder":
        return cls(**{name: percentile(sorted_values, p) for name, p in DRAWDOWN_LEVELS})

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name, _ in DRAWDOWN_LEVELS}


@dataclass(frozen=True)
class LossProbabilities:
    """
    Probability of loss at fixed and configurable thresholds.

    Attributes
    ----------
    prob_10, prob_20, prob_30 : float
        P(R < -10%), P(R < -20%), P(R < -30%)
    threshold : float
        Configurable loss threshold as a fraction
    prob_threshold : float
        P(R < -threshold)
    prob_breakeven : float
        P(R < 0) interpolated from the percentile ladder
    prob_breakeven_empirical : float
        Fraction of paths with R < 0
    """

    prob_10: float
    prob_20: float
    prob_30: float
    threshold: float
    prob_threshold: float
    prob_breakeven: float
    prob_breakeven_empirical: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "prob10": self.prob_10,
            "prob20": self.prob_20,
            "prob30": self.prob_30,
            "threshold": self.threshold,
            "probThreshold": self.prob_threshold,
            "probBreakeven": self.prob_breakeven,
            "probBreakevenEmpirical": self.prob_breakeven_empirical,
        }


def breakeven_probability(
    ladder: PercentileLadder,
    sorted_returns: NDArray[np.float64]
) -> float:
    """
    P(R < 0) by linear interpolation between the ladder points straddling 0.

    If 0 lies below p5 or above p95 the ladder cannot bracket it and the
    empirical fraction of negative returns is used instead.
    """
    points = ladder.points()
    for (p_lo, v_lo), (p_hi, v_hi) in zip(points, points[1:]):
        if v_lo <= 0.0 <= v_hi:
            if v_hi == v_lo:
                return p_lo
            return p_lo + (0.0 - v_lo) / (v_hi - v_lo) * (p_hi - p_lo)
    return float(np.mean(sorted_returns < 0.0))


def loss_probabilities(
    sorted_returns: NDArray[np.float64],
    ladder: PercentileLadder,
    threshold_percent: float
) -> LossProbabilities:
    """Probability-of-loss block for a sorted return sample."""
    r = np.asarray(sorted_returns, dtype=np.float64)
    threshold = abs(threshold_percent) / 100.0
    p10, p20, p30 = (float(np.mean(r < -t)) for t in LOSS_THRESHOLDS)
    return LossProbabilities(
        prob_10=p10,
        prob_20=p20,
        prob_30=p30,
        threshold=threshold,
        prob_threshold=float(np.mean(r < -threshold)),
        prob_breakeven=breakeven_probability(ladder, r),
        prob_breakeven_empirical=float(np.mean(r < 0.0)),
    )


@dataclass(frozen=True)
class ContributionTable:
    """
    Conditional contribution of each asset (and cash) at each percentile.

    ``values[level]`` has one entry per ticker followed by the cash row and
    sums to the portfolio return at that level.
    """

    tickers: Tuple[str, ...]
    values: Dict[str, NDArray[np.float64]]
    betas: NDArray[np.float64]

    def total(self, level: str) -> float:
        return float(np.sum(self.values[level]))

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {"tickers": list(self.tickers)}
        out.update({level: v.tolist() for level, v in self.values.items()})
        out["betas"] = self.betas.tolist()
        return out


CASH_ROW = "CASH"


def contribution_analysis(
    ladder: PercentileLadder,
    weights: NDArray[np.float64],
    mu: NDArray[np.float64],
    covariance: NDArray[np.float64],
    cash_weight: float = 0.0,
    cash_rate: float = 0.0,
    tickers: Optional[Sequence[str]] = None
) -> ContributionTable:
    """
    Analytic single-factor attribution of each percentile outcome.

    Resampling the paths behind every percentile is infeasible at scale, so
    each asset is assumed to move with the realised portfolio through its
    beta:

        β_i = (Σ w)_i / σ_p²
        c_i(p) = w_i (μ_i + β_i (R_pos(p) - R̄_pos))

    where R_pos(p) is the positions part of the portfolio return at level p
    and R̄_pos = Σ w_i μ_i. Because Σ w_i β_i = 1 the asset contributions
    plus the cash row (cash weight × cash rate) add up to R(p).

    Parameters
    ----------
    ladder : PercentileLadder
        Simulated percentile ladder
    weights : NDArray[np.float64]
        Leverage-adjusted weights, shape (N,)
    mu : NDArray[np.float64]
        Expected returns, shape (N,)
    covariance : NDArray[np.float64]
        Covariance matrix, shape (N, N)
    cash_weight, cash_rate : float
        Cash allocation and its fixed rate
    tickers : Sequence[str], optional
        Row labels; defaults to asset indices

    Returns
    -------
    ContributionTable
    """
    w = np.asarray(weights, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    S = np.asarray(covariance, dtype=np.float64)
    n = len(w)

    cash_return = cash_weight * cash_rate
    expected_positions = float(w @ mu)
    variance = portfolio_volatility(w, S) ** 2

    if variance > 1e-12:
        betas = (S @ w) / variance
        shares = w * betas
    else:
        # No risk to attribute: split deviations by weight
        betas = np.zeros(n)
        total_w = float(w.sum())
        shares = w / total_w if abs(total_w) > 1e-12 else np.full(n, 1.0 / max(n, 1))

    levels = [(name, getattr(ladder, name)) for name, _ in TERMINAL_LEVELS]
    levels.append(("mean", ladder.mean))

    values = {}
    for name, portfolio_value in levels:
        deviation = (portfolio_value - cash_return) - expected_positions
        assets = w * mu + shares * deviation
        values[name] = np.append(assets, cash_return)

    labels = tuple(tickers) if tickers is not None else tuple(str(i) for i in range(n))
    return ContributionTable(tickers=labels + (CASH_ROW,), values=values, betas=betas)


@dataclass(frozen=True)
class SimulationResult:
    """
    Outcome of one simulation run.

    Created once per run and never mutated; the next run produces a new
    record. On failure only ``error`` is meaningful.
    """

    terminal_returns: NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    max_drawdowns: NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    terminal: Optional[PercentileLadder] = None
    terminal_dollars: Optional[PercentileLadder] = None
    drawdown: Optional[DrawdownLadder] = None
    prob_loss: Optional[LossProbabilities] = None
    contributions: Optional[ContributionTable] = None
    portfolio_value: float = 0.0
    n_paths: int = 0
    n_valid: int = 0
    n_units: int = 0
    use_qmc: bool = False
    fat_tail_method: str = ""
    used_fallback: bool = False
    simulation_time: float = 0.0
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, **kwargs) -> "SimulationResult":
        return cls(error=error, **kwargs)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, object]:
        """Plain-dict view for the presentation layer."""
        if not self.ok:
            return {"error": self.error, "terminalReturns": [], "maxDrawdowns": []}
        return {
            "terminalReturns": self.terminal_returns.tolist(),
            "maxDrawdowns": self.max_drawdowns.tolist(),
            "terminal": self.terminal.to_dict(),
            "terminalDollars": dict(
                self.terminal_dollars.to_dict(), startingValue=self.portfolio_value
            ),
            "drawdown": self.drawdown.to_dict(),
            "probLoss": self.prob_loss.to_dict(),
            "contributions": self.contributions.to_dict() if self.contributions else None,
            "portfolioValue": self.portfolio_value,
            "numPaths": self.n_paths,
            "validPaths": self.n_valid,
            "useQmc": self.use_qmc,
            "fatTailMethod": self.fat_tail_method,
            "usedFallback": self.used_fallback,
            "simulationTime": self.simulation_time,
        }
