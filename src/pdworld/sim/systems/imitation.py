from __future__ import annotations

from typing import List, Optional

from ..core.agent import Agent
from ..core.rng import DeterministicRng
from .fitness import FitnessModel


def pick_role_model(agents: List[Agent], focal: Agent, choice: float) -> Optional[Agent]:
    """Walk the neighbor list in stored order, spending `choice` on each fitness share."""
    for n in focal.neighbors:
        neighbor = agents[n]
        if choice < neighbor.fitness:
            return neighbor
        choice -= neighbor.fitness
    return None


def imitate(agents: List[Agent], rng: DeterministicRng, model: FitnessModel) -> Optional[int]:
    """
    Run one imitation event and return the focal index if its strategy flipped.

    The focal agent's own fitness joins the weighted pool, so it may keep its strategy
    even when neighbors are fitter. A flip refreshes the fitness of the focal agent and
    every neighbor before returning, since the next event reads those values.
    """

    focal_id = rng.next_int(len(agents))
    focal = agents[focal_id]
    start_strategy = focal.strategy

    total_fitness = 0.0
    for n in focal.neighbors:
        total_fitness += agents[n].fitness

    if total_fitness > 0:
        choice = rng.next_below(total_fitness + focal.fitness)
        if choice < total_fitness:
            winner = pick_role_model(agents, focal, choice)
            if winner is not None:
                focal.strategy = winner.strategy

    if focal.strategy is start_strategy:
        return None

    model.evaluate(agents, focal_id)
    for n in focal.neighbors:
        model.evaluate(agents, n)
    return focal_id
