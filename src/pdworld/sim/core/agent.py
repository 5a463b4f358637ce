from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from pygame.math import Vector2


class Strategy(str, Enum):
    COOPERATE = "Cooperate"
    DEFECT = "Defect"

    @classmethod
    def from_bool(cls, cooperate: bool) -> "Strategy":
        return cls.COOPERATE if cooperate else cls.DEFECT


@dataclass(slots=True)
class Agent:
    id: int
    position: Vector2
    strategy: Strategy
    fitness: float = 0.0
    neighbors: List[int] = field(default_factory=list)

    @property
    def cooperates(self) -> bool:
        return self.strategy is Strategy.COOPERATE
