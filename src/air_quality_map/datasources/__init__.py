"""Data provider capabilities.

Every provider is reached through the same small contract (``base.py``)::

    class SourceCapability(Protocol):
        code: str
        async def fetch(self, request: FetchRequest) -> list[RawRecord]: ...

The orchestrator only ever talks to a ``SourceRegistry``; it does not know
which capability class sits behind a code.

Modules:
  - base.py      - FetchRequest, RawRecord, SourceCapability protocol
  - registry.py  - SourceRegistry (canonical code -> capability)
  - http_json.py - HttpJsonSource, one JSON endpoint via the shared session
  - static.py    - StaticSource, fixed records or a JSON file

Adding a new datasource
-----------------------
1. Write a class with a ``code`` attribute and an ``async fetch(request)``
   returning a list of mappings (or Measurement/CommunityReport models).
   Return ``[]`` for "no data"; raise for transport or parse failures.
   Blocking clients go through ``asyncio.to_thread`` (see ``http_json.py``).

2. Records must carry the measurement keys (``pollutant``, ``value``,
   ``unit``) or a ``signalType``; everything else is dropped at ingestion.

3. Register it in ``build_registry()`` below, or on a registry of your own.

4. Add tests in ``tests/test_datasources.py``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from air_quality_map.datasources.base import FetchRequest, RawRecord, SourceCapability
from air_quality_map.datasources.http_json import HttpJsonSource
from air_quality_map.datasources.registry import SourceRegistry
from air_quality_map.datasources.static import StaticSource

if TYPE_CHECKING:
    from air_quality_map.config import Settings

logger = logging.getLogger(__name__)


def build_registry(settings: Settings) -> SourceRegistry:
    """Registry for the configured providers.

    Every ``<code>.json`` file in ``settings.static_dir`` becomes a
    StaticSource; every entry of ``settings.source_urls`` becomes an
    HttpJsonSource and takes precedence over a static file with the same code.
    """
    registry = SourceRegistry()
    if settings.static_dir is not None:
        for path in sorted(settings.static_dir.glob("*.json")):
            registry.register(StaticSource.from_json_file(path.stem, path))
    for code, url in settings.source_urls.items():
        registry.register(HttpJsonSource(code, url))
    logger.debug("Registered sources: %s", registry.codes())
    return registry


__all__ = [
    "FetchRequest",
    "HttpJsonSource",
    "RawRecord",
    "SourceCapability",
    "SourceRegistry",
    "StaticSource",
    "build_registry",
]
