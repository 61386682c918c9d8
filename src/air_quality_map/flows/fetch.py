"""
Prefect flow for fetching the latest measurements from every selected source.

Runs one orchestrator cycle for the configured selection and stores the
merged snapshot in the live tier.

Run locally:
    python -m air_quality_map.flows.fetch

Run with Prefect dashboard:
    prefect server start &
    python -m air_quality_map.flows.fetch
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from prefect import flow, task

from air_quality_map.config import get_settings
from air_quality_map.datasources import build_registry
from air_quality_map.orchestrator import FetchOrchestrator, OrchestratorSnapshot
from air_quality_map.reference.time_steps import refresh_period
from air_quality_map.schemas import Selection
from air_quality_map.store import DataStore

# Data store with tiered directories
store = DataStore(get_settings().data_dir)

# Relative path within the store
SNAPSHOT_PATH = Path("live/snapshot.json")


def snapshot_to_data(snapshot: OrchestratorSnapshot) -> dict[str, Any]:
    """JSON-ready copy of a snapshot (camelCase record keys)."""
    return {
        "measurements": [m.model_dump(mode="json", by_alias=True) for m in snapshot.measurements],
        "reports": [r.model_dump(mode="json", by_alias=True) for r in snapshot.reports],
        "error": snapshot.error,
        "source_errors": dict(snapshot.source_errors),
        "last_refresh": snapshot.last_refresh.isoformat() if snapshot.last_refresh else None,
    }


async def _run_cycle(selection: Selection, source_timeout: float) -> OrchestratorSnapshot:
    orchestrator = FetchOrchestrator(
        build_registry(get_settings()), source_timeout=source_timeout
    )
    try:
        orchestrator.set_selection(selection)
        return await orchestrator.wait_idle()
    finally:
        await orchestrator.aclose()


@task(name="fetch-cycle")
def fetch_cycle(selection: Selection, source_timeout: float = 30.0) -> dict[str, Any]:
    """Fetch every selected source once and return the merged snapshot."""
    snapshot = asyncio.run(_run_cycle(selection, source_timeout))
    return snapshot_to_data(snapshot)


@task(name="save-snapshot")
def save_snapshot(data: dict[str, Any], selection: Selection) -> Path:
    """Save the merged snapshot via store, valid for one refresh period."""
    return store.write(
        SNAPSHOT_PATH,
        data,
        source=",".join(selection.canonical_sources),
        valid_until=datetime.now(UTC) + timedelta(seconds=refresh_period(selection.time_step)),
        pollutant=selection.pollutant,
        time_step=selection.time_step,
        sources=list(selection.sources),
    )


def _stored_selection_matches(selection: Selection) -> bool:
    meta = store.meta(SNAPSHOT_PATH)
    return (
        meta.get("pollutant") == selection.pollutant
        and meta.get("time_step") == selection.time_step
        and meta.get("sources") == list(selection.sources)
    )


@flow(name="fetch-data", log_prints=True)
def fetch_all(
    sources: list[str] | None = None,
    pollutant: str | None = None,
    time_step: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """
    Fetch the latest data for a selection (settings fill what is not given).

    Skips the fetch when the stored snapshot was made for the same selection
    and is still within its refresh period, unless ``force`` is set.
    """
    settings = get_settings()
    selection = Selection(
        sources=tuple(sources if sources is not None else settings.sources),
        pollutant=pollutant or settings.pollutant,
        time_step=time_step or settings.time_step,
    )

    if not selection.canonical_sources:
        print("No source selected, nothing to fetch.")
        return {"measurements": 0, "reports": 0}

    if not force and store.is_fresh(SNAPSHOT_PATH) and _stored_selection_matches(selection):
        print("Snapshot is fresh, skipping fetch.")
        data = store.read(SNAPSHOT_PATH) or {}
    else:
        print(
            f"Fetching {selection.pollutant} ({selection.time_step}) from "
            f"{', '.join(selection.canonical_sources)}..."
        )
        data = fetch_cycle(selection, settings.source_timeout)
        output_path = save_snapshot(data, selection)
        print(
            f"Saved {len(data['measurements'])} measurements and "
            f"{len(data['reports'])} reports to {output_path}"
        )

    for code, message in (data.get("source_errors") or {}).items():
        print(f"Warning: {code} failed: {message}")
    if data.get("error"):
        print(f"Error: {data['error']}")

    return {
        "measurements": len(data.get("measurements", [])),
        "reports": len(data.get("reports", [])),
        "source_errors": data.get("source_errors", {}),
        "error": data.get("error"),
    }


if __name__ == "__main__":
    result = fetch_all()
    print(f"Flow complete: {result}")
