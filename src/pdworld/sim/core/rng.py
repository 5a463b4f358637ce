from __future__ import annotations

import random


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)

    @property
    def seed(self) -> int:
        return self._seed

    def next_float(self) -> float:
        return self._random.random()

    def next_below(self, high: float) -> float:
        """Uniform value in [0, high)."""
        return self._random.random() * high

    def next_int(self, max_value: int) -> int:
        return self._random.randrange(max_value)

    def chance(self, probability: float) -> bool:
        return self._random.random() < probability

    def copy(self) -> DeterministicRng:
        """Independent generator positioned at the same point of the same stream."""
        clone = DeterministicRng(self._seed)
        clone._random.setstate(self._random.getstate())
        return clone
