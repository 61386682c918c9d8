"""Leaflet map renderer for merged measurements and community reports.

Draw order comes from the priority resolver (z-index offsets), overlapping
markers are spread by the spiderfy engine. Placements are computed once at
the activation zoom; the page script switches between true and ring
positions as the map crosses that zoom.
"""

from __future__ import annotations

import html
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from air_quality_map.analysis.priority import PriorityResolver
from air_quality_map.analysis.spiderfy import (
    COORDINATE_PRECISION,
    DEFAULT_RADIUS,
    DEFAULT_ZOOM_THRESHOLD,
    SpiderfyResult,
    entity_key,
    spiderfy,
)
from air_quality_map.reference.pollutants import POLLUTANTS, QUALITY_COLORS
from air_quality_map.reference.sources import source_name
from air_quality_map.renderers import render_template
from air_quality_map.schemas import CommunityReport, Measurement

REPORT_COLOR = "#3b6fb6"


def _value_label(measurement: Measurement) -> str:
    if not measurement.has_value or measurement.value is None:
        return "-"
    return f"{measurement.value:g}"


def _placement_fields(
    result: SpiderfyResult, entity: Measurement | CommunityReport
) -> dict[str, Any]:
    placement = result.spiderfy_data_of(entity)
    if placement is None:
        return {"spiderLat": None, "spiderLng": None, "cluster": None}
    lat, lng = placement.resolved_position
    return {"spiderLat": lat, "spiderLng": lng, "cluster": placement.cluster_index}


def build_marker_payload(
    measurements: Sequence[Measurement],
    reports: Sequence[CommunityReport] = (),
    *,
    resolver: PriorityResolver | None = None,
    spiderfy_enabled: bool = True,
    zoom_threshold: float = DEFAULT_ZOOM_THRESHOLD,
    radius: float = DEFAULT_RADIUS,
    precision: int = COORDINATE_PRECISION,
) -> dict[str, Any]:
    """Markers, cluster centroids and spiderfy settings for the map script.

    Markers are listed lowest z-index first.
    """
    resolver = resolver or PriorityResolver()

    # Placements as they will be once the map is zoomed past the threshold.
    result = spiderfy(
        [*measurements, *reports],
        zoom_threshold,
        zoom_threshold=zoom_threshold,
        radius=radius,
        precision=precision,
        enabled=spiderfy_enabled,
    )

    markers: list[dict[str, Any]] = []
    for m in resolver.sort(measurements):
        key = entity_key(m)
        markers.append(
            {
                "key": key,
                "kind": "measurement",
                "id": m.id,
                "source": m.source,
                "sourceName": source_name(m.source),
                "name": m.name or m.id,
                "lat": m.latitude,
                "lng": m.longitude,
                "z": resolver.z_index_of(m),
                "color": QUALITY_COLORS.get(m.quality_level.value, QUALITY_COLORS["default"]),
                "quality": m.quality_level.value,
                "label": _value_label(m),
                "unit": m.unit,
                "status": m.status.value,
                "timestamp": m.timestamp.isoformat() if m.timestamp else None,
                **_placement_fields(result, m),
            }
        )

    for r in reports:
        key = entity_key(r)
        markers.append(
            {
                "key": key,
                "kind": "report",
                "id": r.id,
                "source": r.source,
                "sourceName": source_name(r.source),
                "name": r.signal_type.value,
                "lat": r.latitude,
                "lng": r.longitude,
                "z": resolver.z_index_for(resolver.base_priority(r.source)),
                "color": REPORT_COLOR,
                "signalType": r.signal_type.value,
                "description": r.description or "",
                "address": r.address or "",
                "timestamp": r.created_at.isoformat() if r.created_at else None,
                **_placement_fields(result, r),
            }
        )

    markers.sort(key=lambda marker: marker["z"])

    return {
        "markers": markers,
        "centroids": [
            {"cluster": index, "lat": lat, "lng": lng} for index, (lat, lng) in result.centroids
        ],
        "spiderfy": {"enabled": spiderfy_enabled, "zoomThreshold": zoom_threshold},
    }


def build_source_summary(
    measurements: Sequence[Measurement],
    reports: Sequence[CommunityReport],
    sources: Sequence[str],
    source_errors: Mapping[str, str] | None = None,
) -> list[dict[str, Any]]:
    """One row per selected source: entity count and last error."""
    counts = Counter(e.source for e in [*measurements, *reports])
    errors = source_errors or {}
    return [
        {
            "code": code,
            "name": source_name(code),
            "count": counts.get(code, 0),
            "error": errors.get(code),
        }
        for code in sources
    ]


def build_air_map_html(
    payload: Mapping[str, Any],
    *,
    pollutant: str,
    center: tuple[float, float],
    zoom: int,
) -> tuple[str, str]:
    """Build the Leaflet map. Returns a (map_div_html, map_script_js) tuple."""
    info = POLLUTANTS.get(pollutant)
    label = info.name if info else pollutant
    markers = payload.get("markers", [])

    if not markers:
        return (
            f"<h2>Air quality map &mdash; {html.escape(label)}</h2>"
            "<p>No measurements available for the current selection.</p>",
            "",
        )

    map_div = render_template(
        "air_map.html.j2",
        label=label,
        marker_count=len(markers),
        cluster_count=len(payload.get("centroids", [])),
        thresholds=info.thresholds if info else (),
        unit=info.unit if info else "",
        colors=QUALITY_COLORS,
    )
    map_script = render_template(
        "air_map_script.html.j2",
        payload=payload,
        center={"lat": center[0], "lng": center[1]},
        zoom=zoom,
    )
    return (map_div, map_script)


def build_source_summary_html(rows: Sequence[Mapping[str, Any]]) -> str:
    """Per-source table under the map."""
    if not rows:
        return ""
    return render_template("source_summary.html.j2", rows=rows)
