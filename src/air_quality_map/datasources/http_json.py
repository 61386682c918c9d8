"""Generic capability for providers exposing a JSON list of records over HTTP.

Provider wire formats are not modeled here: a ``params_builder`` turns the
fetch request into query parameters and ``records_path`` says where the
record list sits in the response. Each record is expected to already use the
measurement or report keys understood by ingestion.

The blocking ``requests`` call runs in a worker thread so the event loop stays
free for the other sources.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

import requests

from air_quality_map.datasources.base import FetchRequest, RawRecord
from air_quality_map.errors import SourceError
from air_quality_map.services.http import session as default_session

logger = logging.getLogger(__name__)

ParamsBuilder = Callable[[FetchRequest], dict[str, Any]]


def default_params(request: FetchRequest) -> dict[str, Any]:
    """Query parameters sent when no builder is given."""
    params: dict[str, Any] = {
        "pollutant": request.pollutant,
        "timeStep": request.time_step,
    }
    filters = request.aux_filters
    if filters.date_from is not None:
        params["dateFrom"] = filters.date_from.isoformat()
    if filters.date_to is not None:
        params["dateTo"] = filters.date_to.isoformat()
    if filters.sensor_id:
        params["sensorId"] = filters.sensor_id
    if filters.signal_types:
        params["signalTypes"] = ",".join(sorted(filters.signal_types))
    return params


def extract_records(payload: Any, records_path: Sequence[str] = ()) -> list[Any]:
    """Walk ``records_path`` into a decoded JSON payload and return the list there."""
    node = payload
    for key in records_path:
        if not isinstance(node, dict) or key not in node:
            msg = f"missing key {key!r} in response"
            raise ValueError(msg)
        node = node[key]
    if node is None:
        return []
    if not isinstance(node, list):
        msg = f"expected a list of records, got {type(node).__name__}"
        raise ValueError(msg)
    return node


class HttpJsonSource:
    """Source capability backed by one JSON endpoint."""

    def __init__(
        self,
        code: str,
        url: str,
        params_builder: ParamsBuilder | None = None,
        records_path: Sequence[str] = (),
        session: requests.Session | None = None,
    ) -> None:
        self.code = code
        self.url = url
        self.params_builder = params_builder or default_params
        self.records_path = tuple(records_path)
        self.session = session or default_session

    def __repr__(self) -> str:
        return f"HttpJsonSource({self.code!r}, {self.url!r})"

    async def fetch(self, request: FetchRequest) -> list[RawRecord]:
        return await asyncio.to_thread(self._get, request)

    def _get(self, request: FetchRequest) -> list[RawRecord]:
        params = self.params_builder(request)
        logger.debug("GET %s for %s with %s", self.url, self.code, params)
        try:
            resp = self.session.get(self.url, params=params)
            resp.raise_for_status()
            records = extract_records(resp.json(), self.records_path)
        except (requests.RequestException, ValueError) as exc:
            raise SourceError(self.code, str(exc)) from exc
        logger.debug("%s returned %d records", self.code, len(records))
        return records
