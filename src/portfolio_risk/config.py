"""
Simulation configuration.

All tunables of a simulation or optimization run live in one immutable
``SimulationConfig``. Runs receive the config object rather than reading
module globals, so two runs with different settings can coexist.

Usage:
    cfg = get_simulation_config(num_paths=50_000, use_qmc=True)
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union


# Hard cap on parallel execution units, independent of core count
MAX_WORKERS = 8

# Standard practice for Sobol: discard the first 2^10 - 1 points
DEFAULT_QMC_SKIP = 1023

# Degrees of freedom at or above which a Student-t is treated as Gaussian
GAUSSIAN_DF = 30.0


class FatTailMethod(str, Enum):
    """Return model used to fatten tails of simulated asset returns."""

    NONE = "none"
    PER_ASSET_T = "per_asset_t"
    MULTIVARIATE_T = "multivariate_t"

    @classmethod
    def parse(cls, value: Union[str, "FatTailMethod"]) -> "FatTailMethod":
        """
        Parse a method label, accepting the camel-case UI labels.

        Raises
        ------
        ValueError
            If the label is unknown.
        """
        if isinstance(value, FatTailMethod):
            return value
        aliases = {
            "none": cls.NONE,
            "gaussian": cls.NONE,
            "per_asset_t": cls.PER_ASSET_T,
            "perassett": cls.PER_ASSET_T,
            "multivariate_t": cls.MULTIVARIATE_T,
            "multivariatet": cls.MULTIVARIATE_T,
            "multivariatetstudent": cls.MULTIVARIATE_T,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise ValueError(
                f"Unknown fat-tail method {value!r}. "
                f"Expected one of {[m.value for m in cls]}"
            )
        return aliases[key]


@dataclass(frozen=True)
class SimulationConfig:
    """Immutable settings for one simulation or optimization run."""

    num_paths: int = 10_000
    use_qmc: bool = False
    fat_tail_method: FatTailMethod = FatTailMethod.MULTIVARIATE_T
    qmc_sequence: str = "sobol"
    qmc_skip: int = DEFAULT_QMC_SKIP
    # Loss threshold in percent for the configurable probability-of-loss figure
    drawdown_threshold: float = 20.0
    max_workers: int = MAX_WORKERS
    min_valid_fraction: float = 0.9
    unit_timeout: Optional[float] = 30.0
    fallback_single_threaded: bool = True
    seed: Optional[int] = None

    # Swap optimizer
    swap_amount: float = 0.01
    top_k: int = 15
    validation_paths: int = 5_000

    def validate(self) -> "SimulationConfig":
        """
        Check that all settings are usable.

        Returns
        -------
        SimulationConfig
            ``self``, so the call can be chained.

        Raises
        ------
        ValueError
            If any setting is out of range.
        """
        if self.num_paths <= 0:
            raise ValueError(f"num_paths must be positive. Got {self.num_paths}")
        if self.validation_paths <= 0:
            raise ValueError(
                f"validation_paths must be positive. Got {self.validation_paths}"
            )
        if self.max_workers <= 0:
            raise ValueError(f"max_workers must be positive. Got {self.max_workers}")
        if not 0.0 < self.min_valid_fraction <= 1.0:
            raise ValueError(
                f"min_valid_fraction must be in (0, 1]. Got {self.min_valid_fraction}"
            )
        if self.qmc_sequence not in ("sobol", "halton"):
            raise ValueError(
                f"qmc_sequence must be 'sobol' or 'halton'. Got {self.qmc_sequence!r}"
            )
        if self.qmc_skip < 0:
            raise ValueError(f"qmc_skip must be non-negative. Got {self.qmc_skip}")
        if self.top_k <= 0:
            raise ValueError(f"top_k must be positive. Got {self.top_k}")
        FatTailMethod.parse(self.fat_tail_method)
        return self


def get_simulation_config(**overrides) -> SimulationConfig:
    """Return the default config with ``overrides`` applied and validated."""
    cfg = SimulationConfig()
    if "fat_tail_method" in overrides:
        overrides["fat_tail_method"] = FatTailMethod.parse(overrides["fat_tail_method"])
    return replace(cfg, **overrides).validate()
