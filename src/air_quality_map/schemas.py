"""
Domain models for the air quality map.

Pydantic models for records delivered by data providers and for the caller's
selection state. These define the canonical schema: source capabilities may
hand back loosely shaped mappings, ingestion validates them into these models.

Keys are accepted in snake_case or camelCase (``quality_level`` or
``qualityLevel``) so provider payloads can be passed through unchanged.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from air_quality_map.reference.pollutants import DEFAULT_POLLUTANT
from air_quality_map.reference.sources import canonical_source, canonical_sources
from air_quality_map.reference.time_steps import DEFAULT_TIME_STEP

#: (latitude, longitude) in WGS84 degrees.
Position = tuple[float, float]

_RECORD_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
    str_strip_whitespace=True,
)

# =============================================================================
# Enumerations
# =============================================================================


class QualityLevel(StrEnum):
    """Air-quality index bucket of a measured value."""

    BON = "bon"
    MOYEN = "moyen"
    DEGRADE = "degrade"
    MAUVAIS = "mauvais"
    TRES_MAUVAIS = "tresMauvais"
    EXTR_MAUVAIS = "extrMauvais"
    DEFAULT = "default"
    NO_DATA = "noData"

    @property
    def has_data(self) -> bool:
        """False for the buckets meaning "no usable recent value"."""
        return self not in (QualityLevel.DEFAULT, QualityLevel.NO_DATA)


class DeviceStatus(StrEnum):
    """Whether a device currently reports."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SignalType(StrEnum):
    """Kind of nuisance a citizen report describes."""

    ODOR = "odor"
    NOISE = "noise"
    BURNING = "burning"
    VISUAL = "visual"


# Labels used by the reporting platform itself.
_SIGNAL_TYPE_ALIASES: dict[str, SignalType] = {
    "odeur": SignalType.ODOR,
    "odeurs": SignalType.ODOR,
    "bruit": SignalType.NOISE,
    "bruits": SignalType.NOISE,
    "brulage": SignalType.BURNING,
    "brûlage": SignalType.BURNING,
    "visuel": SignalType.VISUAL,
    "pollution visuelle": SignalType.VISUAL,
}


# =============================================================================
# Records
# =============================================================================


class Measurement(BaseModel):
    """A reading from a physical or virtual sensor, normalized across sources."""

    model_config = _RECORD_CONFIG

    id: str = Field(..., description="Stable identifier of the physical device")
    source: str = Field(..., description="Canonical leaf provider code")
    name: str | None = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    pollutant: str
    value: float | None = None
    unit: str
    quality_level: QualityLevel = QualityLevel.DEFAULT
    status: DeviceStatus = DeviceStatus.ACTIVE
    timestamp: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _string_id(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("source")
    @classmethod
    def _leaf_source(cls, value: str) -> str:
        return canonical_source(value)

    @property
    def position(self) -> Position:
        return (self.latitude, self.longitude)

    @property
    def has_value(self) -> bool:
        """True when the measurement carries a usable recent value.

        A zero value counts as missing: providers report 0 for silent devices.
        """
        if not self.quality_level.has_data:
            return False
        return self.value is not None and math.isfinite(self.value) and self.value != 0


class CommunityReport(BaseModel):
    """A citizen-submitted nuisance signal (non-quantitative)."""

    model_config = _RECORD_CONFIG

    id: str
    source: str
    signal_type: SignalType
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    description: str | None = None
    address: str | None = None
    created_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _string_id(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("source")
    @classmethod
    def _leaf_source(cls, value: str) -> str:
        return canonical_source(value)

    @field_validator("signal_type", mode="before")
    @classmethod
    def _platform_label(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _SIGNAL_TYPE_ALIASES.get(value.strip().lower(), value.strip().lower())
        return value

    @property
    def position(self) -> Position:
        return (self.latitude, self.longitude)


Record = Measurement | CommunityReport

# =============================================================================
# Selection
# =============================================================================


class AuxFilters(BaseModel):
    """Extra, per-source request parameters.

    Part of the effective request: changing them forces a refetch of the
    source they belong to.
    """

    model_config = ConfigDict(frozen=True)

    date_from: date | None = None
    date_to: date | None = None
    sensor_id: str | None = None
    signal_types: frozenset[SignalType] = frozenset()

    @field_validator("date_to")
    @classmethod
    def _ordered_range(cls, value: date | None, info: ValidationInfo) -> date | None:
        start = info.data.get("date_from")
        if value is not None and start is not None and value < start:
            msg = f"date_to ({value}) is before date_from ({start})"
            raise ValueError(msg)
        return value


class Selection(BaseModel):
    """What the user currently asks to see. Read-only to the core."""

    model_config = ConfigDict(frozen=True)

    pollutant: str = DEFAULT_POLLUTANT
    sources: tuple[str, ...] = ()
    time_step: str = DEFAULT_TIME_STEP
    aux_filters: dict[str, AuxFilters] = Field(default_factory=dict)
    auto_refresh: bool = False

    @field_validator("aux_filters")
    @classmethod
    def _leaf_keys(cls, value: dict[str, AuxFilters]) -> dict[str, AuxFilters]:
        return {canonical_source(code): filters for code, filters in value.items()}

    @property
    def canonical_sources(self) -> tuple[str, ...]:
        """Selected identifiers normalized to leaf provider codes."""
        return canonical_sources(self.sources)

    def filters_for(self, source: str) -> AuxFilters:
        """Auxiliary filters of one source (empty filters when unset)."""
        return self.aux_filters.get(canonical_source(source), AuxFilters())


# =============================================================================
# Geographic
# =============================================================================


class BoundingBox(BaseModel):
    """Geographic bounding box for viewport queries."""

    model_config = ConfigDict(frozen=True)

    south: float = Field(..., ge=-90, le=90)
    west: float = Field(..., ge=-180, le=180)
    north: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    @classmethod
    def region_sud(cls) -> BoundingBox:
        """Default bbox for the Provence-Alpes-Côte d'Azur region."""
        return cls(south=42.98, west=4.23, north=45.13, east=7.72)
