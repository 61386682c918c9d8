"""
Prefect flows for the data pipeline.

Flows:
- fetch: One orchestrator cycle over the selected sources, saved to live/
- build: Stored snapshot -> static Leaflet map page

Usage (local):
    python -m air_quality_map.flows.fetch
    python -m air_quality_map.flows.build

Usage (Prefect):
    prefect server start  # Optional, for dashboard
    prefect deployment run 'fetch-data/default'
"""
