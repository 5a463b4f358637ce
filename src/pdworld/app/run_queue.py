from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Deque, Dict, List, Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.world import World

logger = logging.getLogger(__name__)

_RUN_SEED_SALT = 0x5EED0F7E5A1E0001

ROW_COLUMNS = (
    "run",
    "radius",
    "cost_benefit_ratio",
    "population_size",
    "epoch_budget",
    "epoch",
    "num_coop",
    "num_defect",
)


def derive_run_seed(seed: int, run_id: int) -> int:
    return (int(seed) ^ (int(_RUN_SEED_SALT) + int(run_id))) & 0xFFFFFFFFFFFFFFFF


@dataclass
class RunInfo:
    id: int
    config: SimulationConfig
    seed: int
    cur_epoch: int = 0
    num_coop: int = 0
    num_defect: int = 0
    started: bool = False

    @property
    def finished(self) -> bool:
        return self.started and self.cur_epoch >= self.config.epoch_budget

    def as_row(self) -> Dict[str, Any]:
        return {
            "run": self.id,
            "radius": self.config.radius,
            "cost_benefit_ratio": self.config.cost_benefit_ratio,
            "population_size": self.config.population_size,
            "epoch_budget": self.config.epoch_budget,
            "epoch": self.cur_epoch,
            "num_coop": self.num_coop,
            "num_defect": self.num_defect,
        }


class RunQueue:
    """FIFO of parameterized runs driven one after another on a shared World."""

    def __init__(self) -> None:
        self._runs: Deque[RunInfo] = deque()
        self._history: List[RunInfo] = []
        self._next_id = 0

    def is_empty(self) -> bool:
        return not self._runs

    def runs_remaining(self) -> int:
        return len(self._runs)

    @property
    def history(self) -> List[RunInfo]:
        return self._history

    def pending(self) -> List[RunInfo]:
        return list(self._runs)

    def add_run(self, config: SimulationConfig) -> RunInfo:
        run = RunInfo(id=self._next_id, config=replace(config), seed=derive_run_seed(config.seed, self._next_id))
        self._next_id += 1
        self._runs.append(run)
        logger.info("queued run %d (r=%s u=%s N=%d E=%d)", run.id, config.radius, config.cost_benefit_ratio,
                    config.population_size, config.epoch_budget)
        return run

    def queue_runs(self, config: SimulationConfig, count: int) -> List[RunInfo]:
        return [self.add_run(config) for _ in range(max(0, int(count)))]

    def front(self) -> RunInfo:
        if not self._runs:
            raise IndexError("run queue is empty")
        return self._runs[0]

    def remove_run(self) -> RunInfo:
        if not self._runs:
            raise IndexError("run queue is empty")
        run = self._runs.popleft()
        self._history.append(run)
        return run

    def advance(self, world: World, steps: int) -> Optional[RunInfo]:
        """
        Drive the front run `steps` epochs forward on `world`.

        A run that has not started yet first re-seeds and sets up the world with its
        own parameters. Finished runs move to `history`. With an empty queue the world
        is stepped on its own and None is returned.
        """

        if self.is_empty():
            world.run(steps)
            return None

        run = self.front()
        if not run.started:
            config = run.config
            world.setup(
                radius=config.radius,
                cost_benefit_ratio=config.cost_benefit_ratio,
                population_size=config.population_size,
                epoch_budget=config.epoch_budget,
                use_average_fitness=config.use_average_fitness,
                seed=run.seed,
            )
            run.started = True
            logger.info("starting run %d", run.id)

        world.run(steps)
        self.record_progress(run, world)
        if run.finished:
            self.remove_run()
            logger.info("run %d finished: epoch=%d cooperators=%d", run.id, run.cur_epoch, run.num_coop)
        return run

    @staticmethod
    def record_progress(run: RunInfo, world: World) -> None:
        run.cur_epoch = world.epoch
        run.num_coop = world.count_cooperators()
        run.num_defect = len(world.agents) - run.num_coop
