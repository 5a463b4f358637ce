from __future__ import annotations

from pygame.math import Vector2

from ..core.config import WrapMode


def _wrap_delta(delta: float) -> float:
    delta = abs(delta)
    if delta > 1.0 - delta:
        delta = 1.0 - delta
    return delta


def toroidal_offset(a: Vector2, b: Vector2, wrap_mode: WrapMode = WrapMode.INDEPENDENT) -> tuple[float, float]:
    """Per-axis distances between two points on the unit torus."""
    x_dist = _wrap_delta(a.x - b.x)
    if wrap_mode is WrapMode.COUPLED:
        # The legacy second wrap test re-checks x_dist, so y stays unwrapped.
        return x_dist, abs(a.y - b.y)
    return x_dist, _wrap_delta(a.y - b.y)


def toroidal_distance_sq(a: Vector2, b: Vector2, wrap_mode: WrapMode = WrapMode.INDEPENDENT) -> float:
    x_dist, y_dist = toroidal_offset(a, b, wrap_mode)
    return x_dist * x_dist + y_dist * y_dist
