"""Data provider catalog: leaf sources, UI groups and authority tiers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceInfo:
    """A leaf data provider."""

    code: str
    name: str
    priority: int
    reports: bool = False


# Base priority per authority tier. Higher is drawn on top.
SOURCE_PRIORITY: dict[str, int] = {
    "atmoRef": 1000,  # reference stations
    "atmoMicro": 1000,  # qualified microsensors
    "nebuleair": 600,
    "purpleair": 400,
    "sensorCommunity": 400,
    "mobileair": 300,
    "signalair": 200,  # citizen reports
}

SOURCES: dict[str, SourceInfo] = {
    "atmoRef": SourceInfo("atmoRef", "Station de référence AtmoSud", SOURCE_PRIORITY["atmoRef"]),
    "atmoMicro": SourceInfo("atmoMicro", "Microcapteurs qualifiés", SOURCE_PRIORITY["atmoMicro"]),
    "nebuleair": SourceInfo("nebuleair", "NebuleAir", SOURCE_PRIORITY["nebuleair"]),
    "sensorCommunity": SourceInfo(
        "sensorCommunity", "Sensor.Community", SOURCE_PRIORITY["sensorCommunity"]
    ),
    "purpleair": SourceInfo("purpleair", "PurpleAir", SOURCE_PRIORITY["purpleair"]),
    "mobileair": SourceInfo("mobileair", "MobileAir", SOURCE_PRIORITY["mobileair"]),
    "signalair": SourceInfo("signalair", "SignalAir", SOURCE_PRIORITY["signalair"], reports=True),
}

# Checkbox groups shown by the UI. Never stored on entities.
SOURCE_GROUPS: dict[str, tuple[str, ...]] = {
    "communautaire": ("nebuleair", "sensorCommunity", "purpleair"),
}

# Platform whose records are community reports rather than measurements.
REPORT_SOURCE = "signalair"

GROUP_SEPARATOR = "."


def canonical_source(code: str) -> str:
    """Strip a UI group prefix: ``"communautaire.nebuleair"`` -> ``"nebuleair"``."""
    if GROUP_SEPARATOR in code:
        return code.rsplit(GROUP_SEPARATOR, 1)[1]
    return code


def canonical_sources(codes: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Normalise selected identifiers, dropping duplicates but keeping order."""
    seen: dict[str, None] = {}
    for code in codes:
        leaf = canonical_source(code.strip())
        if leaf:
            seen.setdefault(leaf, None)
    return tuple(seen)


def expand_group(code: str) -> tuple[str, ...]:
    """Return the leaf codes a group stands for, or the code itself."""
    return SOURCE_GROUPS.get(code, (canonical_source(code),))


def source_name(code: str) -> str:
    """Human-readable name for a (possibly composite) source code."""
    info = SOURCES.get(canonical_source(code))
    return info.name if info else code
