"""Tests for domain models and reference data helpers."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from air_quality_map.reference import (
    SOURCE_GROUPS,
    SOURCE_PRIORITY,
    SOURCES,
    canonical_source,
    canonical_sources,
    refresh_period,
)
from air_quality_map.reference.sources import expand_group, source_name
from air_quality_map.schemas import (
    AuxFilters,
    BoundingBox,
    CommunityReport,
    Measurement,
    QualityLevel,
    Selection,
    SignalType,
)


class TestSources:
    """Source catalog and composite codes."""

    def test_every_source_has_a_priority(self) -> None:
        assert set(SOURCES) == set(SOURCE_PRIORITY)

    def test_canonical_source_strips_group(self) -> None:
        assert canonical_source("communautaire.nebuleair") == "nebuleair"
        assert canonical_source("atmoRef") == "atmoRef"

    def test_canonical_sources_dedupes_in_order(self) -> None:
        codes = ["communautaire.purpleair", "atmoRef", "purpleair", " atmoMicro "]
        assert canonical_sources(codes) == ("purpleair", "atmoRef", "atmoMicro")

    def test_expand_group(self) -> None:
        assert expand_group("communautaire") == SOURCE_GROUPS["communautaire"]
        assert expand_group("communautaire.nebuleair") == ("nebuleair",)

    def test_source_name(self) -> None:
        assert source_name("communautaire.purpleair") == "PurpleAir"
        assert source_name("unknown") == "unknown"


class TestRefreshPeriod:
    """Auto-refresh cadence per time step."""

    @pytest.mark.parametrize(
        ("time_step", "seconds"),
        [
            ("instantane", 60),
            ("deuxMin", 120),
            ("quartHeure", 900),
            ("heure", 3600),
            ("jour", 86400),
            ("qh", 900),
            ("d", 86400),
        ],
    )
    def test_periods(self, time_step: str, seconds: float) -> None:
        assert refresh_period(time_step) == seconds

    def test_unknown_falls_back_to_hourly(self) -> None:
        assert refresh_period("fortnight") == 3600


class TestMeasurement:
    """Measurement validation."""

    def test_camel_case_keys(self) -> None:
        m = Measurement.model_validate(
            {
                "id": "a",
                "source": "communautaire.nebuleair",
                "latitude": 43.7,
                "longitude": 7.26,
                "pollutant": "pm10",
                "value": 22,
                "unit": "µg/m³",
                "qualityLevel": "moyen",
            }
        )
        assert m.source == "nebuleair"
        assert m.quality_level == QualityLevel.MOYEN
        assert m.has_value
        assert m.position == (43.7, 7.26)

    def test_frozen(self) -> None:
        m = Measurement(
            id="a", source="atmoRef", latitude=1, longitude=2, pollutant="pm25", unit="u"
        )
        with pytest.raises(ValidationError):
            m.value = 3  # type: ignore[misc]

    def test_no_data_level_has_no_value(self) -> None:
        m = Measurement(
            id="a",
            source="atmoRef",
            latitude=1,
            longitude=2,
            pollutant="pm25",
            unit="u",
            value=12,
            quality_level=QualityLevel.NO_DATA,
        )
        assert not m.has_value


class TestCommunityReport:
    """Report validation."""

    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("Odeur", SignalType.ODOR),
            ("bruits", SignalType.NOISE),
            ("brûlage", SignalType.BURNING),
            ("visual", SignalType.VISUAL),
        ],
    )
    def test_platform_labels(self, label: str, expected: SignalType) -> None:
        report = CommunityReport.model_validate(
            {"id": 3, "source": "signalair", "signalType": label, "latitude": 1, "longitude": 2}
        )
        assert report.signal_type == expected
        assert report.id == "3"


class TestSelection:
    """Selection state."""

    def test_defaults(self) -> None:
        selection = Selection()
        assert selection.pollutant == "pm25"
        assert selection.time_step == "heure"
        assert selection.canonical_sources == ()
        assert not selection.auto_refresh

    def test_aux_filters_keyed_by_leaf(self) -> None:
        filters = AuxFilters(sensor_id="abc")
        selection = Selection(
            sources=("communautaire.nebuleair",),
            aux_filters={"communautaire.nebuleair": filters},
        )
        assert selection.filters_for("nebuleair") == filters
        assert selection.filters_for("atmoRef") == AuxFilters()

    def test_date_range_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError, match="date_to"):
            AuxFilters(date_from=date(2026, 10, 2), date_to=date(2026, 10, 1))

    def test_filters_compare_by_value(self) -> None:
        a = AuxFilters(signal_types=frozenset({SignalType.ODOR}))
        b = AuxFilters(signal_types=frozenset({"odor"}))
        assert a == b


class TestBoundingBox:
    """Bounding box helpers."""

    def test_contains(self) -> None:
        bbox = BoundingBox.region_sud()
        assert bbox.contains(43.7, 7.26)
        assert not bbox.contains(48.85, 2.35)
