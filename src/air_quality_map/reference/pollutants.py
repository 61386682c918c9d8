"""Pollutant catalog and air-quality index thresholds (µg/m³)."""

from __future__ import annotations

from dataclasses import dataclass

# Ordered from cleanest to most polluted.
QUALITY_LEVEL_ORDER: tuple[str, ...] = (
    "bon",
    "moyen",
    "degrade",
    "mauvais",
    "tresMauvais",
    "extrMauvais",
)


@dataclass(frozen=True)
class Threshold:
    """Upper bound (inclusive) of one quality bucket."""

    code: str
    min: float
    max: float


@dataclass(frozen=True)
class Pollutant:
    """A measurable pollutant and its index buckets."""

    code: str
    name: str
    unit: str
    thresholds: tuple[Threshold, ...]


def _buckets(*bounds: tuple[float, float]) -> tuple[Threshold, ...]:
    return tuple(
        Threshold(code, low, high)
        for code, (low, high) in zip(QUALITY_LEVEL_ORDER, bounds, strict=True)
    )


PM1_PM25_THRESHOLDS = _buckets((0, 5), (6, 15), (16, 50), (51, 90), (91, 140), (141, 9999))
PM10_THRESHOLDS = _buckets((0, 15), (16, 45), (46, 120), (121, 195), (196, 270), (271, 10000))
NO2_THRESHOLDS = _buckets((0, 10), (11, 25), (26, 60), (61, 100), (101, 150), (151, 9999))
O3_THRESHOLDS = _buckets((0, 60), (61, 100), (101, 120), (121, 160), (161, 180), (181, 9999))
SO2_THRESHOLDS = _buckets((0, 20), (21, 40), (41, 125), (126, 190), (191, 275), (276, 9999))

POLLUTANTS: dict[str, Pollutant] = {
    "pm1": Pollutant("pm1", "PM₁", "µg/m³", PM1_PM25_THRESHOLDS),
    "pm25": Pollutant("pm25", "PM₂.₅", "µg/m³", PM1_PM25_THRESHOLDS),
    "pm10": Pollutant("pm10", "PM₁₀", "µg/m³", PM10_THRESHOLDS),
    "no2": Pollutant("no2", "NO₂", "µg/m³", NO2_THRESHOLDS),
    "so2": Pollutant("so2", "SO₂", "µg/m³", SO2_THRESHOLDS),
    "o3": Pollutant("o3", "O₃", "µg/m³", O3_THRESHOLDS),
}

DEFAULT_POLLUTANT = "pm25"

# Marker fill per quality level; "default"/"noData" are drawn grey.
QUALITY_COLORS: dict[str, str] = {
    "bon": "#4ff0e6",
    "moyen": "#51ccaa",
    "degrade": "#ede663",
    "mauvais": "#ed5e58",
    "tresMauvais": "#881b33",
    "extrMauvais": "#74287d",
    "default": "#999999",
    "noData": "#999999",
}
