from __future__ import annotations

import math

import pytest

from pdworld.sim.core.agent import Strategy
from pdworld.sim.core.config import IsolatedFitness, NeighborIndex, SimulationConfig, WrapMode
from pdworld.sim.core.errors import InvalidParameterError, PreconditionError, UndefinedFitnessError
from pdworld.sim.core.world import World, WorldStatus


def _small_config(**overrides) -> SimulationConfig:
    values = dict(radius=0.02, cost_benefit_ratio=0.175, population_size=100, epoch_budget=50, seed=42)
    values.update(overrides)
    return SimulationConfig(**values)


def _trajectory(world: World) -> list[tuple[str, float]]:
    return [(agent.strategy.value, agent.fitness) for agent in world.agents]


def test_seeded_scenario_is_reproducible():
    results = []
    for _ in range(2):
        world = World(_small_config())
        world.run(50)
        assert world.epoch == 50
        assert 0 <= world.count_cooperators() <= 100
        results.append((_trajectory(world), world.population_snapshot()))
    assert results[0] == results[1]


def test_identical_seeds_match_after_each_batch():
    config = _small_config(radius=0.1, population_size=150, epoch_budget=30, seed=1234)
    world_a = World(config)
    world_b = World(_small_config(radius=0.1, population_size=150, epoch_budget=30, seed=1234))
    for steps in (1, 4, 10, 15):
        world_a.run(steps)
        world_b.run(steps)
        assert _trajectory(world_a) == _trajectory(world_b)
        assert world_a.epoch == world_b.epoch


def test_different_seeds_diverge():
    world_a = World(_small_config(seed=1))
    world_b = World(_small_config(seed=2))
    assert world_a.population_snapshot() != world_b.population_snapshot()


def test_neighbor_index_choice_does_not_change_trajectory():
    brute = World(_small_config(radius=0.12, neighbor_index=NeighborIndex.BRUTE_FORCE))
    grid = World(_small_config(radius=0.12, neighbor_index=NeighborIndex.GRID))
    assert [a.neighbors for a in brute.agents] == [a.neighbors for a in grid.agents]
    brute.run(20)
    grid.run(20)
    assert _trajectory(brute) == _trajectory(grid)


def test_setup_initializes_population():
    world = World(_small_config(radius=0.2))
    assert world.status is WorldStatus.READY
    assert world.epoch == 0
    assert world.metrics is None
    assert len(world.agents) == 100
    for index, agent in enumerate(world.agents):
        assert agent.id == index
        assert 0.0 <= agent.position.x < 1.0
        assert 0.0 <= agent.position.y < 1.0
        assert agent.strategy in (Strategy.COOPERATE, Strategy.DEFECT)
        for n in agent.neighbors:
            assert index in world.agents[n].neighbors
    cooperators = world.count_cooperators()
    assert cooperators + world.count_defectors() == 100
    assert 0 < cooperators < 100


def test_payoff_follows_ratio():
    world = World(_small_config(cost_benefit_ratio=0.3))
    payoff = world.parameters.payoff
    assert (payoff.cc, payoff.cd) == (1.0, 0.0)
    assert payoff.dc == pytest.approx(1.3)
    assert payoff.dd == pytest.approx(0.3)
    assert world.parameters.radius_sq == pytest.approx(0.02 * 0.02)


def test_run_clamps_to_remaining_budget():
    world = World(_small_config(epoch_budget=5))
    assert world.run(3) == 3
    assert world.remaining_epochs == 2
    assert world.run(10) == 2
    assert world.epoch == 5
    assert world.run(4) == 0
    assert world.epoch == 5


def test_run_without_steps_uses_whole_budget():
    world = World(_small_config(epoch_budget=7))
    assert world.run() == 7
    assert world.metrics is not None
    assert world.metrics.epoch == 7
    assert world.metrics.population == 100
    assert world.metrics.cooperators == world.count_cooperators()


def test_run_rejects_negative_steps():
    world = World(_small_config())
    with pytest.raises(InvalidParameterError):
        world.run(-1)


def test_queries_require_setup():
    world = World(_small_config(), autostart=False)
    assert world.status is WorldStatus.UNINITIALIZED
    with pytest.raises(PreconditionError):
        world.run(1)
    with pytest.raises(PreconditionError):
        world.count_cooperators()
    with pytest.raises(PreconditionError):
        _ = world.epoch
    with pytest.raises(PreconditionError):
        world.population_snapshot()

    world.setup()
    assert world.status is WorldStatus.READY
    assert world.epoch == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"radius": -0.1},
        {"radius": math.nan},
        {"radius": math.inf},
        {"cost_benefit_ratio": math.nan},
        {"population_size": -1},
        {"epoch_budget": -5},
        {"population_size": 2.5},
    ],
)
def test_setup_rejects_invalid_parameters(overrides):
    world = World(_small_config())
    snapshot = world.population_snapshot()
    with pytest.raises(InvalidParameterError):
        world.setup(**overrides)
    # A failed setup leaves the running population alone.
    assert world.population_snapshot() == snapshot
    assert world.radius == 0.02


def test_constructor_rejects_invalid_config():
    with pytest.raises(InvalidParameterError):
        World(_small_config(radius=-1.0))
    with pytest.raises(ValueError):
        World(_small_config(population_size=-3))


def test_setup_resets_epoch_and_applies_parameters():
    world = World(_small_config())
    world.run(10)
    world.setup(radius=0.1, cost_benefit_ratio=0.0, population_size=30, epoch_budget=4, use_average_fitness=True)
    assert world.epoch == 0
    assert len(world.agents) == 30
    assert world.parameters.use_average_fitness
    assert world.parameters.epoch_budget == 4
    assert world.run(100) == 4


def test_reset_rerandomizes_population():
    world = World(_small_config())
    before = world.population_snapshot()
    world.run(5)
    world.reset()
    assert world.epoch == 0
    assert len(world.agents) == 100
    assert world.population_snapshot() != before


def test_setters_apply_on_next_reset_only():
    world = World(_small_config())
    world.set_population_size(40)
    world.set_radius(0.3)
    world.set_cost_benefit_ratio(0.5)
    world.set_epoch_budget(3)
    world.set_use_average_fitness(True)

    assert world.population_size == 40
    assert world.radius == 0.3
    assert len(world.agents) == 100
    assert world.parameters.radius == 0.02
    assert world.parameters.epoch_budget == 50

    world.reset()
    assert len(world.agents) == 40
    assert world.parameters.radius == 0.3
    assert world.parameters.payoff.dd == 0.5
    assert world.parameters.use_average_fitness
    assert world.run(10) == 3


def test_setters_validate_values():
    world = World(_small_config())
    with pytest.raises(InvalidParameterError):
        world.set_radius(-0.5)
    with pytest.raises(InvalidParameterError):
        world.set_population_size(-2)
    assert world.radius == 0.02


def test_explicit_seed_reproduces_setup():
    world = World(_small_config())
    world.setup(seed=99)
    first = world.population_snapshot()
    world.run(3)
    world.setup(seed=99)
    assert world.population_snapshot() == first


def test_empty_population_runs():
    world = World(_small_config(population_size=0, epoch_budget=3))
    assert world.run(5) == 3
    assert world.count_cooperators() == 0
    assert world.metrics.average_fitness == 0.0


def test_isolated_agents_in_average_mode():
    zero = World(_small_config(radius=0.0, use_average_fitness=True, population_size=10))
    assert all(agent.fitness == 0.0 for agent in zero.agents)

    nan = World(
        _small_config(
            radius=0.0, use_average_fitness=True, population_size=10, isolated_fitness=IsolatedFitness.NAN
        )
    )
    assert all(math.isnan(agent.fitness) for agent in nan.agents)
    strategies = [agent.strategy for agent in nan.agents]
    nan.run(5)
    assert [agent.strategy for agent in nan.agents] == strategies
    assert nan.metrics.average_fitness == 0.0

    with pytest.raises(UndefinedFitnessError):
        World(
            _small_config(
                radius=0.0, use_average_fitness=True, population_size=10, isolated_fitness=IsolatedFitness.RAISE
            )
        )


def test_wrap_mode_changes_neighbor_sets():
    independent = World(_small_config(radius=0.15, wrap_mode=WrapMode.INDEPENDENT))
    coupled = World(_small_config(radius=0.15, wrap_mode=WrapMode.COUPLED))
    independent_links = sum(len(agent.neighbors) for agent in independent.agents)
    coupled_links = sum(len(agent.neighbors) for agent in coupled.agents)
    assert coupled_links < independent_links
    for a, b in zip(independent.agents, coupled.agents):
        assert set(b.neighbors) <= set(a.neighbors)


def test_snapshot_contains_positions_and_metadata():
    world = World(_small_config())
    world.run(2)
    snapshot = world.snapshot()
    assert snapshot.epoch == 2
    assert snapshot.cooperators == world.count_cooperators()
    assert snapshot.metadata.population_size == 100
    assert snapshot.metadata.seed == 42
    assert snapshot.metadata.wrap_mode == "independent"
    payload = snapshot.agents[0]
    for key in ["id", "x", "y", "strategy"]:
        assert key in payload
    assert payload["strategy"] in ("Cooperate", "Defect")
    assert payload["x"] == world.agents[0].position.x


def test_cooperator_count_stays_bounded():
    world = World(_small_config(radius=0.15, population_size=120, epoch_budget=40, seed=7))
    for _ in range(40):
        world.run(1)
        assert 0 <= world.count_cooperators() <= 120
        assert world.metrics.cooperators + world.metrics.defectors == 120


@pytest.mark.slow
def test_cooperation_survives_longer_without_temptation():
    def final_cooperators(ratio: float) -> float:
        totals = []
        for seed in range(5):
            world = World(_small_config(radius=0.1, cost_benefit_ratio=ratio, population_size=400,
                                        epoch_budget=200, seed=seed))
            world.run()
            totals.append(world.count_cooperators())
        return sum(totals) / len(totals)

    assert final_cooperators(0.0) >= final_cooperators(0.8)


def test_failed_seeded_setup_keeps_population_and_stream():
    config = _small_config(radius=0.4, population_size=30, seed=1, isolated_fitness=IsolatedFitness.RAISE,
                           use_average_fitness=True)
    failed = World(config)
    untouched = World(_small_config(radius=0.4, population_size=30, seed=1,
                                    isolated_fitness=IsolatedFitness.RAISE, use_average_fitness=True))

    with pytest.raises(UndefinedFitnessError):
        failed.setup(radius=0.0, seed=999)

    assert failed.population_snapshot() == untouched.population_snapshot()
    assert failed.snapshot().metadata == untouched.snapshot().metadata
    assert failed.snapshot().metadata.seed == 1
    assert failed.config.seed == 1

    failed.reset()
    untouched.reset()
    assert failed.population_snapshot() == untouched.population_snapshot()
    failed.run(3)
    untouched.run(3)
    assert _trajectory(failed) == _trajectory(untouched)


def test_failed_unseeded_setup_does_not_advance_stream():
    config = dict(radius=0.4, population_size=30, seed=3, isolated_fitness=IsolatedFitness.RAISE,
                  use_average_fitness=True)
    failed = World(_small_config(**config))
    untouched = World(_small_config(**config))

    with pytest.raises(UndefinedFitnessError):
        failed.setup(radius=0.0)

    failed.reset()
    untouched.reset()
    assert failed.population_snapshot() == untouched.population_snapshot()


def test_use_average_flag_must_be_bool():
    world = World(_small_config())
    with pytest.raises(InvalidParameterError):
        world.set_use_average_fitness("false")
    with pytest.raises(InvalidParameterError):
        world.setup(use_average_fitness=1)
    with pytest.raises(InvalidParameterError):
        World(_small_config(use_average_fitness="yes"))
    assert world.use_average_fitness is False


def test_update_parameters_is_all_or_nothing():
    world = World(_small_config())
    with pytest.raises(InvalidParameterError):
        world.update_parameters(radius=0.3, population_size=-5)
    assert world.radius == 0.02
    assert world.population_size == 100

    with pytest.raises(InvalidParameterError):
        world.update_parameters(radius=0.3, seed=4)
    assert world.radius == 0.02

    world.update_parameters(radius=0.3, population_size=20)
    assert (world.radius, world.population_size) == (0.3, 20)
    assert len(world.agents) == 100


def test_metadata_counts_setups_since_seed():
    world = World(_small_config())
    assert world.snapshot().metadata.setups_since_seed == 0
    world.reset()
    world.reset()
    assert world.snapshot().metadata.setups_since_seed == 2
    world.setup(seed=5)
    metadata = world.snapshot().metadata
    assert (metadata.seed, metadata.setups_since_seed) == (5, 0)
