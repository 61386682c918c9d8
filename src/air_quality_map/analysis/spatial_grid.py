"""Uniform grid index for fast "what is inside the viewport" queries.

Entities are bucketed into square cells of ``cell_size`` degrees. A query
only visits the cells overlapping the bounding box, then checks the exact
bounds of the entities found there.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Generic, TypeVar

from air_quality_map.analysis.spiderfy import PointEntity
from air_quality_map.schemas import BoundingBox

E = TypeVar("E", bound=PointEntity)

_MIN_LAT = -90.0
_MIN_LNG = -180.0


class SpatialGrid(Generic[E]):
    """Grid of entity indexes keyed by cell coordinates."""

    def __init__(self, cell_size: float = 1.0) -> None:
        if cell_size <= 0:
            msg = f"cell_size must be positive, got {cell_size}"
            raise ValueError(msg)
        self.cell_size = cell_size
        self._cells: dict[tuple[int, int], list[int]] = {}
        self._entities: list[E] = []

    def __len__(self) -> int:
        return len(self._entities)

    def _cell(self, lat: float, lng: float) -> tuple[int, int]:
        return (
            math.floor((lng - _MIN_LNG) / self.cell_size),
            math.floor((lat - _MIN_LAT) / self.cell_size),
        )

    def build(self, entities: Iterable[E]) -> None:
        """Index a new entity set, dropping the previous one."""
        self._entities = list(entities)
        self._cells = {}
        for index, entity in enumerate(self._entities):
            self._cells.setdefault(self._cell(entity.latitude, entity.longitude), []).append(index)

    def query(self, bounds: BoundingBox) -> list[E]:
        """Entities inside ``bounds`` (edges included), in indexing order."""
        if not self._entities:
            return []

        min_x, min_y = self._cell(bounds.south, bounds.west)
        max_x, max_y = self._cell(bounds.north, bounds.east)

        hits: list[int] = []
        for x in range(min_x, max_x + 1):
            for y in range(min_y, max_y + 1):
                for index in self._cells.get((x, y), ()):
                    entity = self._entities[index]
                    if bounds.contains(entity.latitude, entity.longitude):
                        hits.append(index)
        return [self._entities[i] for i in sorted(hits)]
