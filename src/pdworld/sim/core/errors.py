from __future__ import annotations


class SimulationError(Exception):
    """Base class for every failure raised by the engine."""


class InvalidParameterError(SimulationError, ValueError):
    pass


class PreconditionError(SimulationError, RuntimeError):
    pass


class UndefinedFitnessError(SimulationError, ArithmeticError):
    """Average fitness requested for an agent without neighbors."""
