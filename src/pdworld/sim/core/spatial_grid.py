from __future__ import annotations

import math
from typing import Dict, List, Sequence, Set, Tuple

from pygame.math import Vector2

from .config import NeighborIndex, WrapMode
from ..utils.math2d import toroidal_distance_sq


def build_neighbor_lists_bruteforce(
    positions: Sequence[Vector2],
    radius: float,
    wrap_mode: WrapMode = WrapMode.INDEPENDENT,
) -> List[List[int]]:
    """
    Test every unordered pair once; O(N^2).

    Pairs closer than `radius` (strictly) are linked both ways. Because `i` grows
    and `j < i`, every neighbor list comes out in ascending index order.
    """

    count = len(positions)
    neighbors: List[List[int]] = [[] for _ in range(count)]
    radius_sq = radius * radius
    for i in range(1, count):
        pos_i = positions[i]
        for j in range(i):
            if toroidal_distance_sq(pos_i, positions[j], wrap_mode) < radius_sq:
                neighbors[i].append(j)
                neighbors[j].append(i)
    return neighbors


class SpatialGrid:
    """Toroidal bucket grid over the unit square with cells wider than `radius`."""

    def __init__(self, radius: float) -> None:
        self._radius = radius
        if radius > 0.0:
            # Strictly wider cells keep float rounding at cell borders harmless.
            self._cells_per_axis = max(1, int(math.ceil(1.0 / radius)) - 1)
        else:
            self._cells_per_axis = 1
        self._cell_size = 1.0 / self._cells_per_axis
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self._neighbor_keys: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}

    @property
    def cells_per_axis(self) -> int:
        return self._cells_per_axis

    def clear(self) -> None:
        self._cells.clear()

    def insert(self, index: int, position: Vector2) -> None:
        key = self._cell_key(position)
        bucket = self._cells.get(key)
        if bucket is None:
            bucket = []
            self._cells[key] = bucket
        bucket.append(index)

    def candidates(self, position: Vector2) -> List[int]:
        """Indices bucketed in the cell of `position` and its wrapped neighbors."""
        found: List[int] = []
        for key in self._wrapped_neighbor_keys(self._cell_key(position)):
            bucket = self._cells.get(key)
            if bucket:
                found.extend(bucket)
        return found

    def build_neighbor_lists(
        self,
        positions: Sequence[Vector2],
        wrap_mode: WrapMode = WrapMode.INDEPENDENT,
    ) -> List[List[int]]:
        """Same result as `build_neighbor_lists_bruteforce`, checking only nearby cells."""
        count = len(positions)
        neighbors: List[List[int]] = [[] for _ in range(count)]
        if self._radius <= 0.0:
            return neighbors

        self.clear()
        for index, position in enumerate(positions):
            self.insert(index, position)

        radius_sq = self._radius * self._radius
        for i, pos_i in enumerate(positions):
            for j in self.candidates(pos_i):
                if j >= i:
                    continue
                if toroidal_distance_sq(pos_i, positions[j], wrap_mode) < radius_sq:
                    neighbors[i].append(j)
                    neighbors[j].append(i)

        for entry in neighbors:
            entry.sort()
        return neighbors

    def _wrapped_neighbor_keys(self, base_key: Tuple[int, int]) -> List[Tuple[int, int]]:
        cached = self._neighbor_keys.get(base_key)
        if cached is not None:
            return cached
        m = self._cells_per_axis
        seen: Set[Tuple[int, int]] = set()
        keys: List[Tuple[int, int]] = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                # Small grids wrap onto themselves; visit each cell once.
                key = ((base_key[0] + dx) % m, (base_key[1] + dy) % m)
                if key in seen:
                    continue
                seen.add(key)
                keys.append(key)
        self._neighbor_keys[base_key] = keys
        return keys

    def _cell_key(self, position: Vector2) -> Tuple[int, int]:
        m = self._cells_per_axis
        return (
            min(m - 1, int(position.x // self._cell_size)),
            min(m - 1, int(position.y // self._cell_size)),
        )


def build_neighbor_lists(
    positions: Sequence[Vector2],
    radius: float,
    wrap_mode: WrapMode = WrapMode.INDEPENDENT,
    index: NeighborIndex = NeighborIndex.GRID,
) -> List[List[int]]:
    if index is NeighborIndex.BRUTE_FORCE:
        return build_neighbor_lists_bruteforce(positions, radius, wrap_mode)
    return SpatialGrid(radius).build_neighbor_lists(positions, wrap_mode)
