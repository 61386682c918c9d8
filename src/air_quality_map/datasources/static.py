"""Capability serving a fixed set of records, for demos, tests and offline use."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path

from air_quality_map.datasources.base import FetchRequest, RawRecord
from air_quality_map.datasources.http_json import extract_records


class StaticSource:
    """Always returns the same records.

    Records carrying a ``pollutant`` key are only returned for that
    pollutant, so one file can hold several pollutants.
    """

    def __init__(self, code: str, records: Iterable[RawRecord] = ()) -> None:
        self.code = code
        self.records = list(records)

    def __repr__(self) -> str:
        return f"StaticSource({self.code!r}, {len(self.records)} records)"

    @classmethod
    def from_json_file(cls, code: str, path: Path, records_path: tuple[str, ...] = ()) -> StaticSource:
        """Load records from a JSON file (a list, or a list nested under ``records_path``)."""
        with path.open() as f:
            payload = json.load(f)
        return cls(code, extract_records(payload, records_path))

    async def fetch(self, request: FetchRequest) -> list[RawRecord]:
        return [record for record in self.records if _matches(record, request.pollutant)]


def _matches(record: RawRecord, pollutant: str) -> bool:
    if isinstance(record, Mapping):
        value = record.get("pollutant")
    else:
        value = getattr(record, "pollutant", None)
    return value is None or value == pollutant
