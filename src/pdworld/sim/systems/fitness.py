from __future__ import annotations

import math
from typing import List, Sequence

from ..core.agent import Agent, Strategy
from ..core.config import IsolatedFitness
from ..core.errors import UndefinedFitnessError
from ..core.payoff import PayoffMatrix


def compute_fitness(
    agent: Agent,
    agents: Sequence[Agent],
    payoff: PayoffMatrix,
    use_average: bool = False,
    isolated: IsolatedFitness = IsolatedFitness.ZERO,
) -> float:
    """
    Play `agent` against each of its neighbors and return the summed payoff.

    With `use_average` the total is divided by the neighbor count. An agent with no
    neighbors has no defined average; `isolated` decides between 0.0, NaN, or raising.
    """

    c_count = 0
    d_count = 0
    for n in agent.neighbors:
        if agents[n].strategy is Strategy.COOPERATE:
            c_count += 1
        else:
            d_count += 1

    c_value, d_value = payoff.row(agent.strategy)
    fitness = c_value * c_count + d_value * d_count

    if use_average:
        neighbor_count = len(agent.neighbors)
        if neighbor_count == 0:
            if isolated is IsolatedFitness.RAISE:
                raise UndefinedFitnessError(f"agent {agent.id} has no neighbors to average over")
            return math.nan if isolated is IsolatedFitness.NAN else 0.0
        fitness /= neighbor_count
    return fitness


class FitnessModel:
    def __init__(
        self,
        payoff: PayoffMatrix,
        use_average: bool = False,
        isolated: IsolatedFitness = IsolatedFitness.ZERO,
    ) -> None:
        self.payoff = payoff
        self.use_average = use_average
        self.isolated = isolated

    def evaluate(self, agents: List[Agent], index: int) -> float:
        agent = agents[index]
        agent.fitness = compute_fitness(agent, agents, self.payoff, self.use_average, self.isolated)
        return agent.fitness

    def evaluate_all(self, agents: List[Agent]) -> None:
        for index in range(len(agents)):
            self.evaluate(agents, index)
