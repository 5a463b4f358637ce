from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class EpochMetrics:
    epoch: int
    population: int
    cooperators: int
    defectors: int
    strategy_changes: int
    average_fitness: float
    epoch_duration_ms: float = 0.0
