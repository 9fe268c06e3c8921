"""
Exceptions raised by the simulation and optimization entry points.

Input problems of a simulation run are reported through
``SimulationResult.error`` instead; these exceptions cover the cases with
no result-with-error contract.
"""


class PortfolioRiskError(Exception):
    """Base class for errors raised by this package."""


class SimulationError(PortfolioRiskError):
    """A parallel unit failed and single-threaded fallback is disabled."""


class OptimizationError(PortfolioRiskError):
    """The swap optimizer cannot run on the given inputs."""
