"""Tests for the multi-source fetch orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from air_quality_map.datasources import FetchRequest, SourceRegistry, StaticSource
from air_quality_map.orchestrator import FetchOrchestrator, OrchestratorSnapshot
from air_quality_map.schemas import AuxFilters, Selection, SignalType


def _measurements(count: int, prefix: str, lat: float = 43.7) -> list[dict[str, Any]]:
    return [
        {
            "id": f"{prefix}-{i}",
            "latitude": lat + i * 0.01,
            "longitude": 7.26,
            "pollutant": "pm25",
            "value": 10 + i,
            "unit": "µg/m³",
        }
        for i in range(count)
    ]


def _reports() -> list[dict[str, Any]]:
    return [
        {"id": "s1", "signalType": "odor", "latitude": 43.3, "longitude": 5.4},
        {"id": "s2", "signalType": "noise", "latitude": 43.31, "longitude": 5.41},
        {"id": "s3", "signalType": "burning", "latitude": 43.32, "longitude": 5.42},
    ]


class ScriptedSource:
    """Capability whose behaviour is set per test."""

    def __init__(
        self,
        code: str,
        records: list[dict[str, Any]] | None = None,
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.code = code
        self.records = records or []
        self.error = error
        self.gate = gate
        self.requests: list[FetchRequest] = []

    async def fetch(self, request: FetchRequest) -> list[dict[str, Any]]:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.records)

    @property
    def calls(self) -> int:
        return len(self.requests)


def run(coro_fn: Callable[[], Awaitable[Any]]) -> Any:
    return asyncio.run(coro_fn())


def _ref_and_micro() -> tuple[ScriptedSource, ScriptedSource, SourceRegistry]:
    ref = ScriptedSource("atmoRef", _measurements(10, "ref"))
    micro = ScriptedSource("atmoMicro", _measurements(5, "micro", lat=44.0))
    return ref, micro, SourceRegistry([ref, micro])


class TestFetchCycle:
    """Merging results of a cycle."""

    def test_merges_every_selected_source(self) -> None:
        ref, micro, registry = _ref_and_micro()

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "atmoMicro")))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 15
        assert not snapshot.loading
        assert snapshot.in_flight == frozenset()
        assert snapshot.last_refresh is not None
        assert snapshot.error is None

    def test_deselecting_drops_source(self) -> None:
        ref, micro, registry = _ref_and_micro()

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "atmoMicro")))
            await orchestrator.wait_idle()
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 10
        assert {m.source for m in snapshot.measurements} == {"atmoRef"}

    def test_eviction_happens_before_new_data_arrives(self) -> None:
        gate = asyncio.Event()
        ref = ScriptedSource("atmoRef", _measurements(10, "ref"))
        micro = ScriptedSource("atmoMicro", _measurements(5, "micro"))
        slow = ScriptedSource("nebuleair", _measurements(3, "neb"), gate=gate)
        registry = SourceRegistry([ref, micro, slow])
        seen: list[OrchestratorSnapshot] = []

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "atmoMicro")))
            await orchestrator.wait_idle()

            orchestrator.subscribe(seen.append)
            orchestrator.set_selection(Selection(sources=("atmoRef", "nebuleair")))
            # Synchronously after the selection change, nothing was fetched yet.
            first = orchestrator.snapshot
            gate.set()
            await orchestrator.wait_idle()
            return first

        first = run(scenario)
        assert {m.source for m in first.measurements} == {"atmoRef"}
        assert first.loading
        assert first.in_flight == frozenset({"atmoRef", "nebuleair"})
        assert all("atmoMicro" not in {m.source for m in s.measurements} for s in seen)
        assert {m.source for m in seen[-1].measurements} == {"atmoRef", "nebuleair"}

    def test_last_refresh_marks_end_of_cycle(self) -> None:
        gate = asyncio.Event()
        ref = ScriptedSource("atmoRef", _measurements(2, "ref"))
        slow = ScriptedSource("nebuleair", _measurements(3, "neb"), gate=gate)
        registry = SourceRegistry([ref, slow])

        async def scenario() -> tuple[OrchestratorSnapshot, OrchestratorSnapshot]:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "nebuleair")))
            while "atmoRef" in orchestrator.snapshot.in_flight:
                await asyncio.sleep(0)
            partial = orchestrator.snapshot
            gate.set()
            return partial, await orchestrator.wait_idle()

        partial, final = run(scenario)
        assert len(partial.measurements) == 2
        assert partial.last_refresh is None
        assert final.last_refresh is not None

    def test_last_refresh_set_when_every_source_failed(self) -> None:
        broken = ScriptedSource("atmoRef", error=RuntimeError("HTTP 503"))

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(SourceRegistry([broken]))
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert snapshot.source_errors == {"atmoRef": "HTTP 503"}
        assert snapshot.last_refresh is not None

    def test_source_replaces_its_previous_data(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(4, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            ref.records = _measurements(2, "new")
            return await orchestrator.refresh()

        snapshot = run(scenario)
        assert [m.id for m in snapshot.measurements] == ["new-0", "new-1"]

    def test_composite_codes_are_normalised(self) -> None:
        neb = ScriptedSource("nebuleair", _measurements(2, "neb"))
        registry = SourceRegistry([neb])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("communautaire.nebuleair",)))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert {m.source for m in snapshot.measurements} == {"nebuleair"}
        request = neb.requests[0]
        assert request.source == "nebuleair"
        assert request.sources == ("communautaire.nebuleair",)

    def test_request_carries_selection(self) -> None:
        ref = ScriptedSource("atmoRef")
        registry = SourceRegistry([ref])
        filters = AuxFilters(sensor_id="FR12345")

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(
                Selection(
                    sources=("atmoRef",),
                    pollutant="no2",
                    time_step="quartHeure",
                    aux_filters={"atmoRef": filters},
                )
            )
            await orchestrator.wait_idle()

        run(scenario)
        request = ref.requests[0]
        assert request.pollutant == "no2"
        assert request.time_step == "quartHeure"
        assert request.aux_filters == filters

    def test_reports_and_measurements_are_split(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(2, "ref"))
        signal = ScriptedSource("signalair", _reports())
        registry = SourceRegistry([ref, signal])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "signalair")))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 2
        assert [r.id for r in snapshot.reports] == ["s1", "s2", "s3"]
        assert {r.source for r in snapshot.reports} == {"signalair"}

    def test_signal_type_filter(self) -> None:
        signal = ScriptedSource("signalair", _reports())
        registry = SourceRegistry([signal])
        filters = AuxFilters(signal_types=frozenset({SignalType.ODOR, SignalType.BURNING}))

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(
                Selection(sources=("signalair",), aux_filters={"signalair": filters})
            )
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert [r.id for r in snapshot.reports] == ["s1", "s3"]


class TestFailureIsolation:
    """One source failing never affects the others."""

    def test_failed_source_does_not_block_others(self) -> None:
        broken = ScriptedSource("atmoRef", error=RuntimeError("HTTP 503"))
        micro = ScriptedSource("atmoMicro", _measurements(5, "micro"))
        registry = SourceRegistry([broken, micro])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "atmoMicro")))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 5
        assert set(snapshot.source_errors) == {"atmoRef"}
        assert "HTTP 503" in snapshot.source_errors["atmoRef"]
        assert snapshot.error is None
        assert not snapshot.loading

    def test_failure_keeps_previous_data(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(3, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            ref.error = ConnectionError("reset by peer")
            return await orchestrator.refresh()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 3
        assert "reset by peer" in snapshot.source_errors["atmoRef"]

    def test_success_clears_previous_error(self) -> None:
        ref = ScriptedSource("atmoRef", error=RuntimeError("down"))
        registry = SourceRegistry([ref])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            ref.error = None
            ref.records = _measurements(1, "ref")
            return await orchestrator.refresh()

        snapshot = run(scenario)
        assert snapshot.source_errors == {}
        assert len(snapshot.measurements) == 1

    def test_timeout(self) -> None:
        stuck = ScriptedSource("atmoRef", gate=asyncio.Event())
        micro = ScriptedSource("atmoMicro", _measurements(2, "micro"))
        registry = SourceRegistry([stuck, micro])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry, source_timeout=0.05)
            orchestrator.set_selection(Selection(sources=("atmoRef", "atmoMicro")))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 2
        assert "no response after 0.05s" in snapshot.source_errors["atmoRef"]
        assert snapshot.in_flight == frozenset()

    def test_unknown_source_sets_cycle_error(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(2, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef", "mobileair")))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert snapshot.error == "Unsupported source: mobileair"
        assert len(snapshot.measurements) == 2

    def test_listener_errors_are_contained(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(2, "ref"))
        registry = SourceRegistry([ref])
        received: list[OrchestratorSnapshot] = []

        def broken(_snapshot: OrchestratorSnapshot) -> None:
            raise ValueError("listener bug")

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.subscribe(broken)
            orchestrator.subscribe(received.append)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert len(snapshot.measurements) == 2
        assert received[-1] is snapshot


class TestSelectionChanges:
    """What a selection change triggers."""

    def test_empty_selection_clears_without_fetching(self) -> None:
        ref, micro, registry = _ref_and_micro()

        async def scenario() -> FetchOrchestrator:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(
                Selection(sources=("atmoRef", "atmoMicro"), auto_refresh=True)
            )
            await orchestrator.wait_idle()
            orchestrator.set_selection(Selection(sources=(), auto_refresh=True))
            await orchestrator.wait_idle()
            return orchestrator

        orchestrator = run(scenario)
        snapshot = orchestrator.snapshot
        assert snapshot.measurements == ()
        assert snapshot.reports == ()
        assert not snapshot.loading
        assert orchestrator.timer is None
        assert (ref.calls, micro.calls) == (1, 1)

    def test_empty_selection_cancels_in_flight(self) -> None:
        gate = asyncio.Event()
        slow = ScriptedSource("atmoRef", _measurements(3, "ref"), gate=gate)
        registry = SourceRegistry([slow])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await asyncio.sleep(0)
            orchestrator.set_selection(Selection())
            gate.set()
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert snapshot.measurements == ()
        assert snapshot.in_flight == frozenset()

    def test_unchanged_selection_does_not_fetch(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(1, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()

        run(scenario)
        assert ref.calls == 1

    def test_pollutant_change_refetches(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(1, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            orchestrator.set_selection(Selection(sources=("atmoRef",), pollutant="pm10"))
            await orchestrator.wait_idle()

        run(scenario)
        assert [r.pollutant for r in ref.requests] == ["pm25", "pm10"]

    def test_aux_filter_change_refreshes_only_that_source(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(1, "ref"))
        signal = ScriptedSource("signalair", _reports())
        registry = SourceRegistry([ref, signal])
        filters = AuxFilters(date_from=None, signal_types=frozenset({SignalType.NOISE}))

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            base = Selection(sources=("atmoRef", "signalair"))
            orchestrator.set_selection(base)
            await orchestrator.wait_idle()
            orchestrator.set_selection(
                base.model_copy(update={"aux_filters": {"signalair": filters}})
            )
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert (ref.calls, signal.calls) == (1, 2)
        assert signal.requests[-1].aux_filters == filters
        assert [r.id for r in snapshot.reports] == ["s2"]

    def test_refresh_sources_ignores_unselected(self) -> None:
        ref, micro, registry = _ref_and_micro()

        async def scenario() -> list[asyncio.Task[None]]:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            tasks = orchestrator.refresh_sources(["atmoMicro"])
            await orchestrator.wait_idle()
            return tasks

        assert run(scenario) == []
        assert micro.calls == 0

    def test_unsubscribe(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(1, "ref"))
        registry = SourceRegistry([ref])
        received: list[OrchestratorSnapshot] = []

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry)
            unsubscribe = orchestrator.subscribe(received.append)
            unsubscribe()
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()

        run(scenario)
        assert received == []


class TestOverlappingRequests:
    """Newest request for a source wins."""

    def test_stale_result_is_discarded(self) -> None:
        first_gate = asyncio.Event()

        class TwoPhaseSource:
            code = "atmoRef"

            def __init__(self) -> None:
                self.calls = 0

            async def fetch(self, request: FetchRequest) -> list[dict[str, Any]]:
                self.calls += 1
                if self.calls == 1:
                    await first_gate.wait()
                    return _measurements(1, "old")
                return _measurements(1, "new")

        registry = SourceRegistry([TwoPhaseSource()])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await asyncio.sleep(0)
            newer = orchestrator.refresh_sources(["atmoRef"])
            await asyncio.gather(*newer)
            first_gate.set()
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert [m.id for m in snapshot.measurements] == ["new-0"]
        assert not snapshot.loading


class TestAutoRefresh:
    """Adaptive refresh timer."""

    def test_timer_refetches(self) -> None:
        ref = ScriptedSource("atmoRef", _measurements(1, "ref"))
        registry = SourceRegistry([ref])

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry, refresh_periods={"heure": 0.02})
            orchestrator.set_selection(Selection(sources=("atmoRef",), auto_refresh=True))
            await asyncio.sleep(0.1)
            await orchestrator.aclose()

        run(scenario)
        assert ref.calls >= 3

    def test_no_timer_without_auto_refresh(self) -> None:
        ref = ScriptedSource("atmoRef")
        registry = SourceRegistry([ref])

        async def scenario() -> FetchOrchestrator:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",)))
            await orchestrator.wait_idle()
            return orchestrator

        assert run(scenario).timer is None

    def test_time_step_change_restarts_timer_once(self) -> None:
        ref = ScriptedSource("atmoRef")
        registry = SourceRegistry([ref])

        async def scenario() -> None:
            loop = asyncio.get_running_loop()
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",), auto_refresh=True))
            hourly = orchestrator.timer
            assert hourly is not None
            assert hourly.when() - loop.time() == pytest.approx(3600, abs=1)

            orchestrator.set_selection(
                Selection(sources=("atmoRef",), time_step="jour", auto_refresh=True)
            )
            daily = orchestrator.timer
            assert hourly.cancelled()
            assert daily is not None and daily is not hourly
            assert daily.when() - loop.time() == pytest.approx(86400, abs=1)

            # Same cadence: the timer is left alone.
            orchestrator.set_selection(
                Selection(
                    sources=("atmoRef",), time_step="jour", pollutant="o3", auto_refresh=True
                )
            )
            assert orchestrator.timer is daily
            await orchestrator.aclose()
            assert daily.cancelled()

        run(scenario)

    def test_toggling_auto_refresh(self) -> None:
        ref = ScriptedSource("atmoRef")
        registry = SourceRegistry([ref])

        async def scenario() -> None:
            orchestrator = FetchOrchestrator(registry)
            selection = Selection(sources=("atmoRef",), auto_refresh=True)
            orchestrator.set_selection(selection)
            timer = orchestrator.timer
            orchestrator.set_selection(selection.model_copy(update={"auto_refresh": False}))
            assert timer is not None and timer.cancelled()
            assert orchestrator.timer is None
            await orchestrator.wait_idle()
            await orchestrator.aclose()

        run(scenario)
        assert ref.calls == 1


class TestWithStaticSource:
    """End to end with the built-in static capability."""

    def test_static_source_filters_pollutant(self) -> None:
        records = [*_measurements(2, "pm"), {**_measurements(1, "no2")[0], "pollutant": "no2"}]
        registry = SourceRegistry([StaticSource("atmoRef", records)])

        async def scenario() -> OrchestratorSnapshot:
            orchestrator = FetchOrchestrator(registry)
            orchestrator.set_selection(Selection(sources=("atmoRef",), pollutant="no2"))
            return await orchestrator.wait_idle()

        snapshot = run(scenario)
        assert [m.id for m in snapshot.measurements] == ["no2-0"]
