from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import InvalidParameterError


class WrapMode(str, Enum):
    INDEPENDENT = "independent"
    # x wraps, y never does; kept for comparison with legacy results
    COUPLED = "coupled"


class IsolatedFitness(str, Enum):
    ZERO = "zero"
    NAN = "nan"
    RAISE = "raise"


class NeighborIndex(str, Enum):
    BRUTE_FORCE = "brute"
    GRID = "grid"


@dataclass
class SimulationConfig:
    radius: float = 0.02
    cost_benefit_ratio: float = 0.175
    population_size: int = 6400
    epoch_budget: int = 5000
    use_average_fitness: bool = False
    seed: int = 0
    wrap_mode: WrapMode = WrapMode.INDEPENDENT
    isolated_fitness: IsolatedFitness = IsolatedFitness.ZERO
    neighbor_index: NeighborIndex = NeighborIndex.GRID
    config_version: str = "v1"

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data.get("simulation", data))


@dataclass
class AppConfig:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    broadcast_interval: int = 1
    frame_seconds: float = 0.05
    play_step: int = 1
    fast_forward_step: int = 100
    num_runs: int = 10

    @staticmethod
    def from_yaml(path: Path) -> "AppConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_app_config(data)


_ENUM_FIELDS = {
    "wrap_mode": WrapMode,
    "isolated_fitness": IsolatedFitness,
    "neighbor_index": NeighborIndex,
}


def _coerce_enum(name: str, value: Any) -> Any:
    enum_type = _ENUM_FIELDS[name]
    try:
        return enum_type(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise InvalidParameterError(f"{name} must be one of: {choices} (got {value!r})") from None


def load_config(raw: Dict[str, Any]) -> SimulationConfig:
    values = dict(raw)
    for name in _ENUM_FIELDS:
        if name in values:
            values[name] = _coerce_enum(name, values[name])
    return SimulationConfig(**values)


def load_app_config(raw: Dict[str, Any]) -> AppConfig:
    simulation = load_config(raw.get("simulation", {}))
    app_values = {k: v for k, v in raw.items() if k != "simulation"}
    return AppConfig(simulation=simulation, **app_values)
