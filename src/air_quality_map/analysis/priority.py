"""Marker draw order from source authority and measured value.

Each source belongs to an authority tier. A tier owns the priority band
``[base, next_higher_base)``; the top tier's band is ``TOP_TIER_SPAN`` wide.
Every score a measurement can get stays inside its tier's band, so source
authority always wins over measured value:

- no usable value -> the band floor (``base``);
- usable value    -> ``base + bonus``, where the bonus is a saturating
  log10 of the normalized value scaled to the band's bonus ceiling, and the
  ceiling is derived from the band width so it never reaches the next tier.

Higher scores are drawn last (on top).
"""

from __future__ import annotations

import functools
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from air_quality_map.reference.sources import SOURCE_PRIORITY
from air_quality_map.schemas import Measurement

TOP_TIER_SPAN = 200.0
# Value at which the bonus saturates.
VALUE_SCALE = 100.0
# Share of each band left unreachable below the next tier.
BONUS_HEADROOM = 0.01
# Scores closer than this are ordered by raw value.
PRIORITY_EPSILON = 0.1
Z_INDEX_MIN = -1000
Z_INDEX_MAX = 1000


@dataclass(frozen=True)
class TierBand:
    """Priority interval owned by one authority tier."""

    base: float
    ceiling: float  # exclusive

    @property
    def width(self) -> float:
        return self.ceiling - self.base


def build_bands(
    priorities: Mapping[str, float], top_tier_span: float = TOP_TIER_SPAN
) -> dict[str, TierBand]:
    """Map each source to its band. Sources sharing a base share a band."""
    bases = sorted(set(priorities.values()))
    ceilings = {
        base: bases[i + 1] if i + 1 < len(bases) else base + top_tier_span
        for i, base in enumerate(bases)
    }
    return {code: TierBand(float(base), float(ceilings[base])) for code, base in priorities.items()}


class PriorityResolver:
    """Scores measurements for draw order and z-index."""

    def __init__(
        self,
        priorities: Mapping[str, float] | None = None,
        *,
        top_tier_span: float = TOP_TIER_SPAN,
        value_scale: float = VALUE_SCALE,
        headroom: float = BONUS_HEADROOM,
    ) -> None:
        if not 0 < headroom < 1:
            msg = f"headroom must be in (0, 1), got {headroom}"
            raise ValueError(msg)
        self.bands = build_bands(SOURCE_PRIORITY if priorities is None else priorities, top_tier_span)
        self.value_scale = value_scale
        self.headroom = headroom
        self.max_priority = max((band.ceiling for band in self.bands.values()), default=0.0)

    def bonus_ceiling(self, band: TierBand) -> float:
        """Largest bonus a measurement of this band can ever get."""
        return band.width * (1 - self.headroom)

    def saturation(self, value: float) -> float:
        """Monotonic, saturating map of a raw value onto [0, 1]."""
        normalized = min(max(value, 0.0) / self.value_scale, 1.0)
        return math.log10(1 + normalized * 9)

    def base_priority(self, source: str) -> float:
        """Floor of a source's band; 0 for unknown sources."""
        band = self.bands.get(source)
        return band.base if band is not None else 0.0

    def priority_of(self, measurement: Measurement) -> float:
        """Priority score; unknown sources score 0."""
        band = self.bands.get(measurement.source)
        if band is None:
            return 0.0
        if not measurement.has_value or measurement.value is None:
            return band.base
        return band.base + self.saturation(measurement.value) * self.bonus_ceiling(band)

    def compare(self, a: Measurement, b: Measurement) -> int:
        """Three-way comparison: negative when ``a`` is drawn below ``b``."""
        pa, pb = self.priority_of(a), self.priority_of(b)
        if abs(pa - pb) < PRIORITY_EPSILON:
            ka, kb = self._tie_key(a), self._tie_key(b)
            return (ka > kb) - (ka < kb)
        return (pa > pb) - (pa < pb)

    @staticmethod
    def _tie_key(measurement: Measurement) -> tuple[bool, float]:
        # Stale values on no-data markers never outrank a usable value
        if not measurement.has_value or measurement.value is None:
            return (False, 0.0)
        return (True, measurement.value)

    def sort(self, measurements: Iterable[Measurement]) -> list[Measurement]:
        """Lowest priority first, so the most important markers are drawn last."""
        return sorted(measurements, key=functools.cmp_to_key(self.compare))

    def z_index_of(self, measurement: Measurement) -> int:
        return self.z_index_for(self.priority_of(measurement))

    def z_index_for(self, priority: float) -> int:
        """Linear remap of the priority range onto ``[Z_INDEX_MIN, Z_INDEX_MAX]``."""
        if self.max_priority <= 0:
            return Z_INDEX_MIN
        clamped = min(max(priority, 0.0), self.max_priority)
        span = Z_INDEX_MAX - Z_INDEX_MIN
        return round(Z_INDEX_MIN + clamped / self.max_priority * span)


_default = PriorityResolver()


def priority_of(measurement: Measurement) -> float:
    """Priority score with the built-in source tiers."""
    return _default.priority_of(measurement)


def compare_priority(a: Measurement, b: Measurement) -> int:
    return _default.compare(a, b)


def sort_by_priority(measurements: Iterable[Measurement]) -> list[Measurement]:
    return _default.sort(measurements)


def z_index_of(measurement: Measurement) -> int:
    """Renderer z-index offset with the built-in source tiers."""
    return _default.z_index_of(measurement)
