"""Lookup table from canonical source codes to capabilities."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from air_quality_map.datasources.base import SourceCapability
from air_quality_map.errors import UnknownSourceError
from air_quality_map.reference.sources import canonical_source

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Capabilities keyed by their canonical code.

    Composite identifiers are accepted everywhere and resolved to their leaf
    provider, so ``communautaire.nebuleair`` finds the ``nebuleair``
    capability.
    """

    def __init__(self, capabilities: Iterable[SourceCapability] = ()) -> None:
        self._capabilities: dict[str, SourceCapability] = {}
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: SourceCapability) -> None:
        """Add a capability, replacing any previous one with the same code."""
        code = canonical_source(capability.code)
        if code in self._capabilities:
            logger.debug("Replacing capability for %s", code)
        self._capabilities[code] = capability

    def resolve(self, code: str) -> SourceCapability:
        """Capability serving ``code``.

        Raises:
            UnknownSourceError: nothing is registered for the code.
        """
        try:
            return self._capabilities[canonical_source(code)]
        except KeyError:
            raise UnknownSourceError(code) from None

    def codes(self) -> list[str]:
        """Registered canonical codes, in registration order."""
        return list(self._capabilities)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and canonical_source(code) in self._capabilities

    def __iter__(self) -> Iterator[SourceCapability]:
        return iter(self._capabilities.values())

    def __len__(self) -> int:
        return len(self._capabilities)
