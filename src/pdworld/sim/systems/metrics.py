from __future__ import annotations

import math
from typing import List, Sequence, TextIO

from ..core.agent import Agent
from ..types.metrics import EpochMetrics


def count_cooperators(agents: Sequence[Agent]) -> int:
    return sum(1 for agent in agents if agent.cooperates)


def average_fitness(agents: Sequence[Agent]) -> float:
    # NaN fitness (isolated agents in average mode) is left out of the mean.
    values = [agent.fitness for agent in agents if not math.isnan(agent.fitness)]
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def create_metrics(epoch: int, agents: Sequence[Agent], strategy_changes: int, duration_ms: float) -> EpochMetrics:
    population = len(agents)
    cooperators = count_cooperators(agents)
    return EpochMetrics(
        epoch=epoch,
        population=population,
        cooperators=cooperators,
        defectors=population - cooperators,
        strategy_changes=strategy_changes,
        average_fitness=average_fitness(agents),
        epoch_duration_ms=duration_ms,
    )


def neighbor_histogram(agents: Sequence[Agent]) -> List[int]:
    """`hist[k]` is the number of agents with exactly k neighbors."""
    if not agents:
        return []
    max_size = max(len(agent.neighbors) for agent in agents)
    hist = [0] * (max_size + 1)
    for agent in agents:
        hist[len(agent.neighbors)] += 1
    return hist


def write_neighbor_info(agents: Sequence[Agent], stream: TextIO) -> None:
    stream.write("neighbors,count\n")
    for size, count in enumerate(neighbor_histogram(agents)):
        stream.write(f"{size},{count}\n")
    stream.flush()
