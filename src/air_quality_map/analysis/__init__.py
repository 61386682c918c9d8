"""Pure rendering-order and layout logic over merged entities.

Each module takes domain models from ``schemas`` and returns plain values or
dataclasses the renderers consume directly.

Dependency rule: analysis/ imports models and reference data only.
It never fetches data, never mutates its inputs and produces no HTML.

Modules:
  - priority: source authority + value -> draw order and z-index
  - spiderfy: exactly co-located markers -> ring layout around their centroid
  - spatial_grid: entities -> uniform grid for viewport queries
"""

from air_quality_map.analysis.priority import (
    PriorityResolver,
    compare_priority,
    priority_of,
    sort_by_priority,
    z_index_of,
)
from air_quality_map.analysis.spatial_grid import SpatialGrid
from air_quality_map.analysis.spiderfy import (
    SpiderfyPlacement,
    SpiderfyResult,
    Spiderfier,
    entity_key,
    spiderfy,
)

__all__ = [
    "PriorityResolver",
    "SpatialGrid",
    "Spiderfier",
    "SpiderfyPlacement",
    "SpiderfyResult",
    "compare_priority",
    "entity_key",
    "priority_of",
    "sort_by_priority",
    "spiderfy",
    "z_index_of",
]
