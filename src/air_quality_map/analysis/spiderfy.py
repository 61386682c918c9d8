"""Radial decluttering of exactly co-located markers ("spiderfy").

Entities sharing a position are spread evenly on a small ring around their
common centroid so each one stays selectable. Only exact coincidence counts:
coordinates are quantized to ``COORDINATE_PRECISION`` decimals (about 0.1 mm
at 9 decimals) before comparison, which absorbs floating-point noise but never
merges points that are merely close. Changing the precision changes which
points are considered coincident.

The layout is only applied once the map is zoomed to ``zoom_threshold`` or
closer. Results are always recomputed from scratch; nothing is patched.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from air_quality_map.schemas import Position

COORDINATE_PRECISION = 9
DEFAULT_RADIUS = 0.001  # degrees
DEFAULT_ZOOM_THRESHOLD = 12


class PointEntity(Protocol):
    """Anything with an id and a WGS84 position."""

    @property
    def id(self) -> str: ...

    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...


E = TypeVar("E", bound=PointEntity)


def entity_key(entity: PointEntity) -> str:
    """Placement key: ``source:id`` when the entity has a source, else ``id``.

    Device ids are only unique within a source, so entities from different
    providers may share one.
    """
    source = getattr(entity, "source", None)
    return f"{source}:{entity.id}" if source else entity.id


@dataclass(frozen=True)
class SpiderfyPlacement:
    """Where a spiderfied entity really is and where it is drawn."""

    original_position: Position
    resolved_position: Position
    cluster_index: int


@dataclass(frozen=True)
class SpiderfyResult:
    """Position overrides plus the centroid of every active cluster."""

    # entity_key -> placement
    placements: dict[str, SpiderfyPlacement] = field(default_factory=dict)
    centroids: tuple[tuple[int, Position], ...] = ()

    @property
    def active(self) -> bool:
        return bool(self.centroids)

    def position_of(self, entity: PointEntity) -> Position:
        placement = self.placements.get(entity_key(entity))
        if placement is None:
            return (entity.latitude, entity.longitude)
        return placement.resolved_position

    def is_spiderfied(self, entity: PointEntity) -> bool:
        return entity_key(entity) in self.placements

    def spiderfy_data_of(self, entity: PointEntity) -> SpiderfyPlacement | None:
        return self.placements.get(entity_key(entity))


EMPTY_RESULT = SpiderfyResult()


def position_key(lat: float, lng: float, precision: int = COORDINATE_PRECISION) -> Position:
    """Quantized coordinates used as the coincidence key."""
    return (round(lat, precision), round(lng, precision))


def coincident_groups(
    entities: Iterable[E], precision: int = COORDINATE_PRECISION
) -> list[list[E]]:
    """Groups of two or more entities at the same quantized position.

    Groups come in order of first appearance; members keep input order.
    """
    by_position: dict[Position, list[E]] = {}
    for entity in entities:
        by_position.setdefault(position_key(entity.latitude, entity.longitude, precision), []).append(
            entity
        )
    return [group for group in by_position.values() if len(group) > 1]


def centroid(entities: Sequence[PointEntity]) -> Position:
    """Arithmetic mean of member coordinates."""
    count = len(entities)
    return (
        sum(e.latitude for e in entities) / count,
        sum(e.longitude for e in entities) / count,
    )


def ring_positions(center: Position, count: int, radius: float = DEFAULT_RADIUS) -> list[Position]:
    """``count`` points evenly spaced on a circle of ``radius`` degrees."""
    step = 2 * math.pi / count
    lat, lng = center
    return [
        (lat + radius * math.cos(i * step), lng + radius * math.sin(i * step))
        for i in range(count)
    ]


def spiderfy(
    entities: Iterable[PointEntity],
    zoom: float,
    *,
    zoom_threshold: float = DEFAULT_ZOOM_THRESHOLD,
    radius: float = DEFAULT_RADIUS,
    precision: int = COORDINATE_PRECISION,
    enabled: bool = True,
) -> SpiderfyResult:
    """Compute ring placements for every coincident group.

    Returns ``EMPTY_RESULT`` when disabled, zoomed out below the threshold,
    or when nothing coincides. Single level only: centroids are never
    themselves declustered.
    """
    if not enabled or zoom < zoom_threshold:
        return EMPTY_RESULT

    groups = coincident_groups(entities, precision)
    if not groups:
        return EMPTY_RESULT

    placements: dict[str, SpiderfyPlacement] = {}
    centroids: list[tuple[int, Position]] = []
    for index, group in enumerate(groups):
        center = centroid(group)
        centroids.append((index, center))
        for entity, resolved in zip(group, ring_positions(center, len(group), radius), strict=True):
            placements[entity_key(entity)] = SpiderfyPlacement(
                original_position=(entity.latitude, entity.longitude),
                resolved_position=resolved,
                cluster_index=index,
            )
    return SpiderfyResult(placements=placements, centroids=tuple(centroids))


class Spiderfier:
    """Keeps a spiderfy result in sync with an entity set and the map zoom.

    Recomputes when the entities change, when the engine is toggled, or when
    the zoom crosses the activation threshold. Zoom changes that stay on the
    same side of the threshold keep the current result.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        zoom: float = 0,
        zoom_threshold: float = DEFAULT_ZOOM_THRESHOLD,
        radius: float = DEFAULT_RADIUS,
        precision: int = COORDINATE_PRECISION,
    ) -> None:
        self.enabled = enabled
        self.zoom = zoom
        self.zoom_threshold = zoom_threshold
        self.radius = radius
        self.precision = precision
        self._entities: tuple[PointEntity, ...] = ()
        self.result = EMPTY_RESULT

    @property
    def active(self) -> bool:
        return self.result.active

    @property
    def centroids(self) -> tuple[tuple[int, Position], ...]:
        return self.result.centroids

    def update(self, entities: Iterable[PointEntity]) -> SpiderfyResult:
        """Replace the entity set and recompute."""
        self._entities = tuple(entities)
        return self._recompute()

    def set_zoom(self, zoom: float) -> bool:
        """Record a zoom change; returns True if it crossed the threshold."""
        crossed = (zoom >= self.zoom_threshold) != (self.zoom >= self.zoom_threshold)
        self.zoom = zoom
        if crossed:
            self._recompute()
        return crossed

    def set_enabled(self, enabled: bool) -> None:
        if enabled != self.enabled:
            self.enabled = enabled
            self._recompute()

    def position_of(self, entity: PointEntity) -> Position:
        return self.result.position_of(entity)

    def is_spiderfied(self, entity: PointEntity) -> bool:
        return self.result.is_spiderfied(entity)

    def spiderfy_data_of(self, entity: PointEntity) -> SpiderfyPlacement | None:
        return self.result.spiderfy_data_of(entity)

    def _recompute(self) -> SpiderfyResult:
        self.result = spiderfy(
            self._entities,
            self.zoom,
            zoom_threshold=self.zoom_threshold,
            radius=self.radius,
            precision=self.precision,
            enabled=self.enabled,
        )
        return self.result
