"""The contract between the fetch orchestrator and data providers.

A source capability is anything with a ``code`` and an async ``fetch``
method. It returns raw records (mappings or already-built models) and never
needs to know how they will be merged or drawn.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from air_quality_map.schemas import AuxFilters, CommunityReport, Measurement

#: One record as handed back by a capability, before ingestion.
RawRecord = Mapping[str, Any] | Measurement | CommunityReport


@dataclass(frozen=True)
class FetchRequest:
    """Everything a capability needs to answer one fetch.

    ``sources`` holds the identifiers the caller selected for this provider,
    which may be composite (``communautaire.nebuleair``). ``aux_filters`` are
    the provider's own filters from the selection.
    """

    source: str
    pollutant: str
    time_step: str
    sources: tuple[str, ...] = ()
    aux_filters: AuxFilters = field(default_factory=AuxFilters)


@runtime_checkable
class SourceCapability(Protocol):
    """A data provider the orchestrator can call."""

    code: str

    async def fetch(self, request: FetchRequest) -> list[RawRecord]:
        """Records for the request; ``[]`` means "no data".

        Raises on transport or parse failures.
        """
        ...
