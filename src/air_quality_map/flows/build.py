"""
Prefect flow for building the static map page from the stored snapshot.

Run locally:
    python -m air_quality_map.flows.build
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from prefect import flow, task
from pydantic import ValidationError

from air_quality_map.analysis.priority import PriorityResolver
from air_quality_map.config import get_settings
from air_quality_map.reference.pollutants import POLLUTANTS
from air_quality_map.reference.sources import canonical_sources
from air_quality_map.reference.time_steps import TIME_STEPS
from air_quality_map.renderers import render_template
from air_quality_map.renderers.air_map import (
    build_air_map_html,
    build_marker_payload,
    build_source_summary,
    build_source_summary_html,
)
from air_quality_map.schemas import CommunityReport, Measurement
from air_quality_map.store import DataStore

logger = logging.getLogger(__name__)

# Store and output paths
store = DataStore(get_settings().data_dir)
SITE_DIR = store.derived / "site"

# Path matching what fetch.py writes
SNAPSHOT_PATH = Path("live/snapshot.json")


# =============================================================================
# Data loading
# =============================================================================


def _validate_all(model: type[Measurement] | type[CommunityReport], rows: list[Any]) -> list[Any]:
    records = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as exc:
            logger.debug("Skipping stored %s row: %s", model.__name__, exc)
    return records


@task(name="load-snapshot")
def load_snapshot() -> dict[str, Any] | None:
    """Load the merged snapshot and its metadata from store."""
    raw = store.read_raw(SNAPSHOT_PATH)
    if raw is None:
        return None
    data = raw.get("data", {})
    return {
        "meta": raw.get("meta", {}),
        "measurements": _validate_all(Measurement, data.get("measurements", [])),
        "reports": _validate_all(CommunityReport, data.get("reports", [])),
        "error": data.get("error"),
        "source_errors": data.get("source_errors", {}),
    }


# =============================================================================
# Main build task and flow
# =============================================================================


@task(name="build-html")
def build_html(snapshot: dict[str, Any]) -> str:
    """Build the map page from a loaded snapshot."""
    settings = get_settings()
    meta = snapshot.get("meta", {})
    measurements: list[Measurement] = snapshot["measurements"]
    reports: list[CommunityReport] = snapshot["reports"]

    pollutant = meta.get("pollutant", settings.pollutant)
    time_step = meta.get("time_step", settings.time_step)
    fetched_at = meta.get("fetched_at", "")
    updated = datetime.fromisoformat(fetched_at).strftime("%Y-%m-%d %H:%M") if fetched_at else "-"

    payload = build_marker_payload(
        measurements,
        reports,
        resolver=PriorityResolver(),
        spiderfy_enabled=settings.spiderfy_enabled,
        zoom_threshold=settings.spiderfy_zoom_threshold,
        radius=settings.spiderfy_radius,
        precision=settings.spiderfy_precision,
    )
    air_map_html, map_script_html = build_air_map_html(
        payload,
        pollutant=pollutant,
        center=(settings.map_lat, settings.map_lon),
        zoom=settings.map_zoom,
    )

    rows = build_source_summary(
        measurements,
        reports,
        canonical_sources(meta.get("sources", [])),
        snapshot.get("source_errors"),
    )

    pollutant_info = POLLUTANTS.get(pollutant)
    step_info = TIME_STEPS.get(time_step)
    return render_template(
        "base.html.j2",
        title="Air quality map",
        pollutant_label=pollutant_info.name if pollutant_info else pollutant,
        time_step_label=step_info.name if step_info else time_step,
        updated=updated,
        error=snapshot.get("error"),
        air_map=air_map_html,
        map_script=map_script_html,
        source_summary=build_source_summary_html(rows),
    )


@task(name="write-site")
def write_site(html: str) -> Path:
    """Write HTML to site directory."""
    SITE_DIR.mkdir(parents=True, exist_ok=True)
    output_path = SITE_DIR / "index.html"
    with output_path.open("w") as f:
        f.write(html)
    return output_path


@flow(name="build-site", log_prints=True)
def build_all() -> dict[str, Any]:
    """
    Build the static map page from the stored snapshot.

    This is the main Prefect flow that generates the static site.
    """
    print("Loading snapshot...")
    snapshot = load_snapshot()

    if not snapshot:
        print("No snapshot found. Run fetch flow first.")
        return {"error": "no data"}

    print(
        f"Building map with {len(snapshot['measurements'])} measurements "
        f"and {len(snapshot['reports'])} reports..."
    )
    html = build_html(snapshot)

    print("Writing site...")
    output_path = write_site(html)

    print(f"Site built: {output_path}")
    return {"pages": 1, "output": str(output_path)}


if __name__ == "__main__":
    result = build_all()
    print(f"Flow complete: {result}")
