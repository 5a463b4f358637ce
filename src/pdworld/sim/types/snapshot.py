from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .metrics import EpochMetrics


@dataclass(slots=True)
class Snapshot:
    epoch: int
    cooperators: int
    metrics: Optional[EpochMetrics]
    agents: List[Dict[str, Any]]
    metadata: "SnapshotMetadata"


@dataclass(slots=True)
class SnapshotMetadata:
    """
    Parameters of the population in the snapshot.

    `seed` is the last explicit seed. Every setup without a seed (a `reset`, for
    instance) continues that stream, so the population is reproduced by `seed` plus
    the same sequence of calls; `setups_since_seed` counts those setups.
    """

    radius: float
    cost_benefit_ratio: float
    population_size: int
    epoch_budget: int
    use_average_fitness: bool
    wrap_mode: str
    seed: int
    setups_since_seed: int
    config_version: str
