from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .agent import Strategy


@dataclass(frozen=True, slots=True)
class PayoffMatrix:
    cc: float
    cd: float
    dc: float
    dd: float

    @classmethod
    def from_ratio(cls, cost_benefit_ratio: float) -> "PayoffMatrix":
        u = float(cost_benefit_ratio)
        return cls(cc=1.0, cd=0.0, dc=1.0 + u, dd=u)

    def row(self, strategy: Strategy) -> Tuple[float, float]:
        """Payoffs earned against a cooperator and against a defector."""
        if strategy is Strategy.COOPERATE:
            return self.cc, self.cd
        return self.dc, self.dd
