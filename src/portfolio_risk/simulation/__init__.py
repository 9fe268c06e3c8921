"""
Simulation orchestration: partition paths over parallel units, merge, and
derive terminal statistics.

**Usage:**
```python
from portfolio_risk.simulation import MonteCarloSimulator, PortfolioInputs, Position

inputs = PortfolioInputs(
    positions=[Position("SPY"), Position("TLT")],
    weights=[0.6, 0.4],
    correlation=corr,
    portfolio_value=100_000,
)
result = MonteCarloSimulator(get_simulation_config(num_paths=50_000)).run(inputs)
if result.ok:
    print(result.terminal.p5, result.prob_loss.prob_breakeven)
```
"""

from portfolio_risk.simulation.inputs import Position, PortfolioInputs
from portfolio_risk.simulation.results import (
    PercentileLadder,
    DrawdownLadder,
    LossProbabilities,
    ContributionTable,
    SimulationResult,
    percentile,
    breakeven_probability,
    loss_probabilities,
    contribution_analysis,
)
from portfolio_risk.simulation.worker import WorkItem, BatchResult, run_work_item, merge_batches
from portfolio_risk.simulation.orchestrator import (
    MonteCarloSimulator,
    partition_paths,
    resolve_unit_count,
)

__all__ = [
    "Position",
    "PortfolioInputs",
    "PercentileLadder",
    "DrawdownLadder",
    "LossProbabilities",
    "ContributionTable",
    "SimulationResult",
    "percentile",
    "breakeven_probability",
    "loss_probabilities",
    "contribution_analysis",
    "WorkItem",
    "BatchResult",
    "run_work_item",
    "merge_batches",
    "MonteCarloSimulator",
    "partition_paths",
    "resolve_unit_count",
]
