"""Exception hierarchy.

Per-source failures are recovered inside the orchestrator; cycle-level
failures become the snapshot's single ``error`` string.
"""

from __future__ import annotations


class AirQualityMapError(Exception):
    """Base class for all package errors."""


class SourceError(AirQualityMapError):
    """A single source capability failed to deliver records."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class SourceTimeoutError(SourceError):
    """A source capability did not answer within the configured timeout."""

    def __init__(self, source: str, timeout: float) -> None:
        super().__init__(source, f"no response after {timeout:g}s")
        self.timeout = timeout


class UnknownSourceError(AirQualityMapError):
    """No capability is registered for a requested source code."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Unsupported source: {code}")
        self.code = code
