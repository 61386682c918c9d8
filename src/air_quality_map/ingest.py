"""Record ingestion: discriminate raw provider records into domain models.

The Measurement / CommunityReport split happens here, once. Downstream code
receives typed models and never re-inspects raw keys.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from air_quality_map.reference.pollutants import POLLUTANTS
from air_quality_map.reference.sources import canonical_source
from air_quality_map.schemas import CommunityReport, Measurement, QualityLevel

logger = logging.getLogger(__name__)

_MEASUREMENT_KEYS = ("pollutant", "value", "unit")
_REPORT_KEYS = ("signalType", "signal_type")


def air_quality_level(value: float | None, pollutant: str) -> QualityLevel:
    """Bucket a pollutant value against its index thresholds.

    Returns ``QualityLevel.DEFAULT`` when the value is missing or not a
    finite number, or when the pollutant has no thresholds.
    """
    if value is None or isinstance(value, bool):
        return QualityLevel.DEFAULT
    try:
        number = float(value)
    except (TypeError, ValueError):
        return QualityLevel.DEFAULT
    if not math.isfinite(number):
        return QualityLevel.DEFAULT

    info = POLLUTANTS.get(pollutant)
    if info is None:
        return QualityLevel.DEFAULT

    for bucket in info.thresholds:
        if number <= bucket.max:
            return QualityLevel(bucket.code)
    return QualityLevel.EXTR_MAUVAIS


def _has_keys(raw: Mapping[str, Any], keys: Iterable[str]) -> bool:
    return all(key in raw for key in keys)


def classify_record(
    raw: Mapping[str, Any] | BaseModel, source: str
) -> Measurement | CommunityReport | None:
    """Turn one raw record into a Measurement or CommunityReport.

    A record is a Measurement iff it carries ``pollutant``, ``value`` and
    ``unit``; otherwise it is a CommunityReport iff it carries a signal type.
    Anything else, or anything failing validation, is dropped (None).

    The stored ``source`` is always the canonical code of the capability that
    delivered the record.
    """
    if isinstance(raw, Measurement | CommunityReport):
        return raw.model_copy(update={"source": canonical_source(source)})
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        logger.debug("Dropping non-mapping record from %s: %r", source, raw)
        return None

    data = dict(raw)
    data["source"] = source
    try:
        if _has_keys(data, _MEASUREMENT_KEYS):
            if data.get("qualityLevel") is None and data.get("quality_level") is None:
                data["qualityLevel"] = air_quality_level(data["value"], str(data["pollutant"]))
            return Measurement.model_validate(data)
        if any(key in data for key in _REPORT_KEYS):
            return CommunityReport.model_validate(data)
    except ValidationError as exc:
        logger.debug(
            "Dropping malformed record %s from %s: %s",
            data.get("id"),
            source,
            exc.errors(include_url=False),
        )
        return None

    logger.debug("Dropping record %s from %s: not a measurement nor a report", data.get("id"), source)
    return None


def partition_records(
    raws: Iterable[Mapping[str, Any] | BaseModel], source: str
) -> tuple[list[Measurement], list[CommunityReport]]:
    """Classify a source's records and split them by kind."""
    measurements: list[Measurement] = []
    reports: list[CommunityReport] = []
    for raw in raws:
        record = classify_record(raw, source)
        if isinstance(record, Measurement):
            measurements.append(record)
        elif isinstance(record, CommunityReport):
            reports.append(record)
    return measurements, reports
