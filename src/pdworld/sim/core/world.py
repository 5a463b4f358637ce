from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from time import perf_counter
from typing import Any, Dict, List, Optional

from pygame.math import Vector2

from .agent import Agent, Strategy
from .config import IsolatedFitness, NeighborIndex, SimulationConfig, WrapMode
from .errors import InvalidParameterError, PreconditionError
from .payoff import PayoffMatrix
from .rng import DeterministicRng
from .spatial_grid import build_neighbor_lists
from ..systems import imitation, metrics as metrics_system
from ..systems.fitness import FitnessModel
from ..types.metrics import EpochMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata

logger = logging.getLogger(__name__)


class WorldStatus(str, Enum):
    UNINITIALIZED = "Uninitialized"
    READY = "Ready"
    RUNNING = "Running"


@dataclass(frozen=True, slots=True)
class RunParameters:
    radius: float
    radius_sq: float
    cost_benefit_ratio: float
    population_size: int
    epoch_budget: int
    use_average_fitness: bool
    wrap_mode: WrapMode
    isolated_fitness: IsolatedFitness
    payoff: PayoffMatrix


TUNABLE_PARAMETERS = frozenset(
    {"radius", "cost_benefit_ratio", "population_size", "epoch_budget", "use_average_fitness"}
)


def validate_config(config: SimulationConfig) -> None:
    radius = config.radius
    if isinstance(radius, bool) or not isinstance(radius, (int, float)) or not math.isfinite(radius) or radius < 0:
        raise InvalidParameterError(f"radius must be a finite number >= 0 (got {radius!r})")
    ratio = config.cost_benefit_ratio
    if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or not math.isfinite(ratio):
        raise InvalidParameterError(f"cost_benefit_ratio must be a finite number (got {ratio!r})")
    for name in ("population_size", "epoch_budget", "seed"):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidParameterError(f"{name} must be an integer (got {value!r})")
    if config.population_size < 0:
        raise InvalidParameterError(f"population_size must be >= 0 (got {config.population_size})")
    if config.epoch_budget < 0:
        raise InvalidParameterError(f"epoch_budget must be >= 0 (got {config.epoch_budget})")
    if not isinstance(config.use_average_fitness, bool):
        raise InvalidParameterError(f"use_average_fitness must be a bool (got {config.use_average_fitness!r})")
    if not isinstance(config.wrap_mode, WrapMode):
        raise InvalidParameterError(f"unknown wrap_mode {config.wrap_mode!r}")
    if not isinstance(config.isolated_fitness, IsolatedFitness):
        raise InvalidParameterError(f"unknown isolated_fitness {config.isolated_fitness!r}")
    if not isinstance(config.neighbor_index, NeighborIndex):
        raise InvalidParameterError(f"unknown neighbor_index {config.neighbor_index!r}")


class World:
    """
    Spatial Prisoner's Dilemma population on the unit torus.

    `setup` scatters the agents and links neighbors; `run` advances whole epochs of
    imitation events. Parameter setters only edit the stored configuration, which
    the next `setup`/`reset` picks up.
    """

    def __init__(self, config: SimulationConfig, autostart: bool = True):
        validate_config(config)
        self._config = replace(config)
        self._rng = DeterministicRng(config.seed)
        self._setups_since_seed = -1
        self._agents: List[Agent] = []
        self._params: RunParameters | None = None
        self._fitness: FitnessModel | None = None
        self._epoch = 0
        self._metrics: EpochMetrics | None = None
        self._status = WorldStatus.UNINITIALIZED
        if autostart:
            self.setup()

    # -- lifecycle -------------------------------------------------------

    def setup(
        self,
        radius: Optional[float] = None,
        cost_benefit_ratio: Optional[float] = None,
        population_size: Optional[int] = None,
        epoch_budget: Optional[int] = None,
        use_average_fitness: Optional[bool] = None,
        seed: Optional[int] = None,
    ) -> None:
        overrides: Dict[str, Any] = {
            "radius": radius,
            "cost_benefit_ratio": cost_benefit_ratio,
            "population_size": population_size,
            "epoch_budget": epoch_budget,
            "use_average_fitness": use_average_fitness,
            "seed": seed,
        }
        config = replace(self._config, **{k: v for k, v in overrides.items() if v is not None})
        validate_config(config)
        # Draw from a private generator so a failed build leaves the stream untouched.
        rng = DeterministicRng(seed) if seed is not None else self._rng.copy()

        payoff = PayoffMatrix.from_ratio(config.cost_benefit_ratio)
        params = RunParameters(
            radius=float(config.radius),
            radius_sq=float(config.radius) * float(config.radius),
            cost_benefit_ratio=float(config.cost_benefit_ratio),
            population_size=config.population_size,
            epoch_budget=config.epoch_budget,
            use_average_fitness=bool(config.use_average_fitness),
            wrap_mode=config.wrap_mode,
            isolated_fitness=config.isolated_fitness,
            payoff=payoff,
        )
        model = FitnessModel(payoff, params.use_average_fitness, config.isolated_fitness)
        agents = self._bootstrap_population(rng, params, model, config.neighbor_index)

        self._rng = rng
        self._setups_since_seed = 0 if seed is not None else self._setups_since_seed + 1
        self._config = config
        self._params = params
        self._fitness = model
        self._agents = agents
        self._epoch = 0
        self._metrics = None
        self._status = WorldStatus.READY
        logger.info(
            "setup r=%s u=%s N=%d E=%d average=%s cooperators=%d",
            config.radius,
            config.cost_benefit_ratio,
            config.population_size,
            config.epoch_budget,
            config.use_average_fitness,
            self.count_cooperators(),
        )

    def reset(self) -> None:
        # The RNG stream continues, so the new population differs from the last one.
        self.setup()

    def run(self, steps: Optional[int] = None) -> int:
        self._require_ready()
        remaining = self.remaining_epochs
        if steps is None:
            steps = remaining
        elif isinstance(steps, bool) or not isinstance(steps, int) or steps < 0:
            raise InvalidParameterError(f"steps must be a non-negative integer (got {steps!r})")
        steps = min(steps, remaining)

        self._status = WorldStatus.RUNNING
        try:
            for _ in range(steps):
                self._metrics = self._run_epoch()
        finally:
            self._status = WorldStatus.READY
        if steps:
            logger.debug("ran %d epochs, epoch=%d cooperators=%d", steps, self._epoch, self._metrics.cooperators)
        return steps

    def _run_epoch(self) -> EpochMetrics:
        start = perf_counter()
        agents = self._agents
        rng = self._rng
        model = self._fitness
        strategy_changes = 0
        for _ in range(len(agents)):
            if imitation.imitate(agents, rng, model) is not None:
                strategy_changes += 1
        self._epoch += 1
        duration_ms = (perf_counter() - start) * 1000.0
        return metrics_system.create_metrics(self._epoch, agents, strategy_changes, duration_ms)

    def _bootstrap_population(
        self, rng: DeterministicRng, params: RunParameters, model: FitnessModel, neighbor_index: NeighborIndex
    ) -> List[Agent]:
        agents: List[Agent] = []
        for index in range(params.population_size):
            x = rng.next_float()
            y = rng.next_float()
            strategy = Strategy.from_bool(rng.chance(0.5))
            agents.append(Agent(id=index, position=Vector2(x, y), strategy=strategy))

        neighbor_lists = build_neighbor_lists(
            [agent.position for agent in agents],
            params.radius,
            params.wrap_mode,
            neighbor_index,
        )
        for agent, neighbors in zip(agents, neighbor_lists):
            agent.neighbors = neighbors

        model.evaluate_all(agents)
        return agents

    def _require_ready(self) -> None:
        if self._status is WorldStatus.UNINITIALIZED:
            raise PreconditionError("World.setup() must be called before running or querying the population")

    # -- queries ---------------------------------------------------------

    @property
    def status(self) -> WorldStatus:
        return self._status

    @property
    def agents(self) -> List[Agent]:
        self._require_ready()
        return self._agents

    @property
    def epoch(self) -> int:
        self._require_ready()
        return self._epoch

    @property
    def remaining_epochs(self) -> int:
        self._require_ready()
        return max(0, self._params.epoch_budget - self._epoch)

    @property
    def metrics(self) -> EpochMetrics | None:
        return self._metrics

    @property
    def parameters(self) -> RunParameters:
        self._require_ready()
        return self._params

    @property
    def config(self) -> SimulationConfig:
        return self._config

    def count_cooperators(self) -> int:
        self._require_ready()
        return metrics_system.count_cooperators(self._agents)

    def count_defectors(self) -> int:
        return len(self.agents) - self.count_cooperators()

    def population_snapshot(self) -> List[Dict[str, Any]]:
        return [
            {"id": agent.id, "x": agent.position.x, "y": agent.position.y, "strategy": agent.strategy.value}
            for agent in self.agents
        ]

    def snapshot(self) -> Snapshot:
        params = self.parameters
        return Snapshot(
            epoch=self._epoch,
            cooperators=self.count_cooperators(),
            metrics=self._metrics,
            agents=self.population_snapshot(),
            metadata=SnapshotMetadata(
                radius=params.radius,
                cost_benefit_ratio=params.cost_benefit_ratio,
                population_size=params.population_size,
                epoch_budget=params.epoch_budget,
                use_average_fitness=params.use_average_fitness,
                wrap_mode=params.wrap_mode.value,
                seed=self._rng.seed,
                setups_since_seed=self._setups_since_seed,
                config_version=self._config.config_version,
            ),
        )

    # -- parameters (applied on the next setup/reset) ---------------------

    @property
    def radius(self) -> float:
        return self._config.radius

    @property
    def cost_benefit_ratio(self) -> float:
        return self._config.cost_benefit_ratio

    @property
    def population_size(self) -> int:
        return self._config.population_size

    @property
    def epoch_budget(self) -> int:
        return self._config.epoch_budget

    @property
    def use_average_fitness(self) -> bool:
        return self._config.use_average_fitness

    def set_radius(self, radius: float) -> None:
        self._update_config(radius=radius)

    def set_cost_benefit_ratio(self, ratio: float) -> None:
        self._update_config(cost_benefit_ratio=ratio)

    def set_population_size(self, size: int) -> None:
        self._update_config(population_size=size)

    def set_epoch_budget(self, epochs: int) -> None:
        self._update_config(epoch_budget=epochs)

    def set_use_average_fitness(self, enabled: bool = True) -> None:
        self._update_config(use_average_fitness=enabled)

    def update_parameters(self, **changes: Any) -> None:
        """Validate several parameter changes together and store them all or none."""
        unknown = sorted(set(changes) - TUNABLE_PARAMETERS)
        if unknown:
            raise InvalidParameterError(f"unknown parameters: {', '.join(unknown)}")
        self._update_config(**changes)

    def _update_config(self, **changes: Any) -> None:
        config = replace(self._config, **changes)
        validate_config(config)
        self._config = config
