"""
Portfolio inputs supplied by the surrounding application.

Positions carry their percentile anchors; the portfolio carries weights,
the correlation matrix and the value/cash triple. Weights are fractions of
gross exposure and are leverage-adjusted here:

    leverage          = gross positions value / portfolio value   (1 if unknown)
    adjusted weight_i = w_i · leverage
    cash weight       = cash balance / portfolio value

so adjusted weights plus cash weight decompose the whole net asset value.
Weights may be negative (short) and need not sum to 1.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from portfolio_risk.variates.distributions import (
    AssetDistributionParams,
    PercentileAnchors,
    derive_distribution_params,
)


NO_CORRELATION_ERROR = "No correlation matrix available. Please compute correlation first."
NO_POSITIONS_ERROR = "No positions in portfolio."
NON_POSITIVE_VALUE_ERROR = "Portfolio value is zero or negative."
MALFORMED_CORRELATION_ERROR = "Correlation matrix is malformed; expected a square numeric matrix."


@dataclass(frozen=True)
class Position:
    """
    One portfolio position.

    Attributes
    ----------
    ticker : str
        Symbol used in result tables
    quantity : float
        Signed share or notional quantity
    anchors : PercentileAnchors
        One-year return percentile anchors
    params : AssetDistributionParams, optional
        Explicit distribution parameters; override ``anchors`` when given
    """

    ticker: str
    quantity: float = 0.0
    anchors: PercentileAnchors = field(default_factory=PercentileAnchors)
    params: Optional[AssetDistributionParams] = None

    def distribution_params(self) -> AssetDistributionParams:
        if self.params is not None:
            p = self.params
            return AssetDistributionParams.normalized(p.mu, p.sigma, p.skew, p.df)
        return derive_distribution_params(self.anchors)


@dataclass(frozen=True)
class PortfolioInputs:
    """Everything a simulation or optimization run reads."""

    positions: Sequence[Position]
    weights: Sequence[float]
    correlation: Optional[NDArray[np.float64]]
    portfolio_value: float
    cash_balance: float = 0.0
    cash_rate: float = 0.0
    gross_positions_value: Optional[float] = None
    risk_free_rate: float = 0.0

    @property
    def n_assets(self) -> int:
        return len(self.positions)

    @property
    def tickers(self) -> List[str]:
        return [p.ticker for p in self.positions]

    def validation_error(self) -> Optional[str]:
        """
        Describe the first input problem, or None if the inputs are usable.

        Checked before any numeric work so the caller can show the message
        and retry with corrected input.
        """
        corr = self.correlation
        if corr is None:
            return NO_CORRELATION_ERROR
        try:
            corr = np.asarray(corr, dtype=np.float64)
        except (TypeError, ValueError):
            return MALFORMED_CORRELATION_ERROR
        if corr.ndim != 2 or corr.shape[0] == 0:
            return NO_CORRELATION_ERROR
        if corr.shape[0] != corr.shape[1]:
            return MALFORMED_CORRELATION_ERROR
        if self.n_assets == 0:
            return NO_POSITIONS_ERROR
        if corr.shape[0] != self.n_assets:
            return (
                f"Correlation matrix size ({corr.shape[0]}) doesn't match "
                f"positions ({self.n_assets})."
            )
        if len(self.weights) != self.n_assets:
            return f"Weights ({len(self.weights)}) don't match positions ({self.n_assets})."
        value = self.portfolio_value
        if value is None or not math.isfinite(value) or value <= 0:
            return NON_POSITIVE_VALUE_ERROR
        return None

    @property
    def leverage_ratio(self) -> float:
        gross = self.gross_positions_value
        if gross is None or not math.isfinite(gross) or gross <= 0:
            return 1.0
        return gross / self.portfolio_value

    @property
    def raw_weights(self) -> NDArray[np.float64]:
        w = np.asarray(self.weights, dtype=np.float64)
        return np.where(np.isfinite(w), w, 0.0)

    @property
    def adjusted_weights(self) -> NDArray[np.float64]:
        adjusted = self.raw_weights * self.leverage_ratio
        return np.where(np.isfinite(adjusted), adjusted, 0.0)

    @property
    def cash_weight(self) -> float:
        ratio = self.cash_balance / self.portfolio_value
        return ratio if math.isfinite(ratio) else 0.0

    @property
    def cash_contribution(self) -> float:
        """Return contributed by cash, cash weight × cash rate."""
        return self.cash_weight * (self.cash_rate or 0.0)

    def distribution_params(self) -> List[AssetDistributionParams]:
        return [p.distribution_params() for p in self.positions]
