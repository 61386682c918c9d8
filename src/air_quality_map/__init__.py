"""Air Quality Map - merged near-real-time air quality from many providers.

Architecture::

    reference/     Static catalog (sources and tiers, pollutants, time steps)
    datasources/   Source capabilities behind one async fetch contract
    ingest.py      Raw records -> Measurement / CommunityReport
    orchestrator.py  Fan-out fetch cycles, per-source merge, auto-refresh
    analysis/      Draw priority, spiderfy layout, viewport grid
    store.py       Tiered cache with TTL (live -> derived)
    renderers/     Pure data -> marker payload and HTML (Leaflet page)
    flows/         Prefect orchestration (fetch saves snapshot, build renders site)
    services/      Shared utilities (HTTP client with retry)

Data flow: datasources -> orchestrator -> store (live) -> analysis -> renderers
-> derived/site/

Extension points, see each package's docstring for step-by-step guides:
  - New data source:   datasources/__init__.py
  - New UI module:     renderers/__init__.py
"""

__version__ = "0.1.0"

from air_quality_map.config import Settings
from air_quality_map.schemas import CommunityReport, Measurement, Selection

__all__ = ["CommunityReport", "Measurement", "Selection", "Settings", "__version__"]
