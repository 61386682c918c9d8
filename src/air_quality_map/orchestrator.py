"""
Multi-source fetch orchestrator.

Keeps one merged view of measurements and community reports across every
selected provider:

- a fetch cycle first evicts data of deselected sources, then starts one
  independent task per selected source;
- each task's result replaces everything previously held for its source;
- a failing or slow source keeps its previous data and is reported in
  ``source_errors``, the other sources are unaffected;
- a per-source generation counter makes the newest request win when
  requests for the same source overlap;
- an optional timer re-runs the cycle at the cadence of the time step.

State is published as immutable ``OrchestratorSnapshot`` objects. Listeners
get a new snapshot after every change and must not expect anything else.

Usage::

    orchestrator = FetchOrchestrator(registry)
    orchestrator.subscribe(lambda snap: print(len(snap.measurements)))
    orchestrator.set_selection(Selection(sources=("atmoRef",), auto_refresh=True))
    ...
    await orchestrator.aclose()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime

from air_quality_map.datasources.base import FetchRequest, RawRecord, SourceCapability
from air_quality_map.datasources.registry import SourceRegistry
from air_quality_map.errors import SourceTimeoutError, UnknownSourceError
from air_quality_map.ingest import partition_records
from air_quality_map.reference.sources import canonical_source, canonical_sources
from air_quality_map.reference.time_steps import refresh_period
from air_quality_map.schemas import CommunityReport, Measurement, Selection

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TIMEOUT = 30.0  # seconds


@dataclasses.dataclass(frozen=True)
class OrchestratorSnapshot:
    """
    Copy-on-write view of the merged state.

    Measurements and reports are grouped by source, in selection order.
    """

    measurements: tuple[Measurement, ...] = ()
    reports: tuple[CommunityReport, ...] = ()
    loading: bool = False
    # Cycle-level problem (e.g. an unsupported source code)
    error: str | None = None
    in_flight: frozenset[str] = frozenset()
    # When the in-flight set last drained, failures included
    last_refresh: datetime | None = None
    # source code -> last failure message
    source_errors: Mapping[str, str] = dataclasses.field(default_factory=dict)


Listener = Callable[[OrchestratorSnapshot], None]


class FetchOrchestrator:
    """Owns the merged entity collections for the current selection."""

    def __init__(
        self,
        registry: SourceRegistry,
        *,
        refresh_periods: Mapping[str, float] | None = None,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
    ) -> None:
        self.registry = registry
        self.source_timeout = source_timeout
        self._refresh_periods = dict(refresh_periods or {})

        self._selection = Selection()
        self._measurements: dict[str, list[Measurement]] = {}
        self._reports: dict[str, list[CommunityReport]] = {}
        self._source_errors: dict[str, str] = {}
        self._error: str | None = None
        self._last_refresh: datetime | None = None

        # source code -> task of its newest request
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._generation: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()

        self._timer: asyncio.TimerHandle | None = None
        self._timer_key: str | None = None

        self._listeners: list[Listener] = []
        self._snapshot = OrchestratorSnapshot()

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def snapshot(self) -> OrchestratorSnapshot:
        return self._snapshot

    @property
    def timer(self) -> asyncio.TimerHandle | None:
        """Pending auto-refresh, if any."""
        return self._timer

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def set_selection(self, selection: Selection) -> None:
        """
        Apply a new selection.

        - no sources: clear everything, cancel in-flight calls and the timer;
        - sources, pollutant or time step changed: full fetch cycle;
        - only auxiliary filters changed: forced refresh of those sources;
        - nothing changed: no fetch.

        Must be called from a running event loop unless the selection is empty.
        """
        previous = self._selection
        self._selection = selection
        sources = selection.canonical_sources

        if not sources:
            self._clear()
        elif (sources, selection.pollutant, selection.time_step) != (
            previous.canonical_sources,
            previous.pollutant,
            previous.time_step,
        ):
            self.begin_cycle()
        else:
            changed = [
                code for code in sources if selection.filters_for(code) != previous.filters_for(code)
            ]
            if changed:
                self.refresh_sources(changed)

        self._sync_timer()

    def begin_cycle(self) -> list[asyncio.Task[None]]:
        """
        Synchronous first half of a fetch cycle.

        Evicts deselected sources, then starts one task per selected source.
        Returns the started tasks.
        """
        sources = self._selection.canonical_sources
        self._evict(sources)
        self._error = None
        tasks = self._dispatch(sources)
        self._publish()
        return tasks

    async def fetch_cycle(self) -> OrchestratorSnapshot:
        """Run a full fetch cycle and wait until every source has settled."""
        tasks = self.begin_cycle()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self._snapshot

    async def refresh(self) -> OrchestratorSnapshot:
        """Re-fetch every selected source (explicit user reload)."""
        return await self.fetch_cycle()

    def refresh_sources(self, codes: Iterable[str]) -> list[asyncio.Task[None]]:
        """
        Forced refresh of some selected sources, even if nothing changed.

        Codes that are not currently selected are ignored.
        """
        selected = set(self._selection.canonical_sources)
        wanted = [code for code in canonical_sources(tuple(codes)) if code in selected]
        if not wanted:
            return []
        tasks = self._dispatch(wanted)
        self._publish()
        return tasks

    async def wait_idle(self) -> OrchestratorSnapshot:
        """Wait until no source call is running."""
        while pending := [task for task in self._tasks if not task.done()]:
            await asyncio.gather(*pending, return_exceptions=True)
        return self._snapshot

    async def aclose(self) -> None:
        """Cancel the timer and every running source call."""
        self._cancel_timer()
        self._timer_key = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        if self._in_flight:
            self._in_flight.clear()
            self._publish()

    # ------------------------------------------------------------------
    # Cycle internals
    # ------------------------------------------------------------------

    def _clear(self) -> None:
        self._evict(())
        self._error = None
        self._publish()

    def _evict(self, sources: Iterable[str]) -> None:
        """Drop data, errors and running calls of every source not in ``sources``."""
        keep = set(sources)
        for collection in (self._measurements, self._reports, self._source_errors):
            for code in [code for code in collection if code not in keep]:
                del collection[code]
        for code in [code for code in self._in_flight if code not in keep]:
            logger.debug("Cancelling in-flight request for deselected source %s", code)
            self._in_flight.pop(code).cancel()

    def _dispatch(self, codes: Iterable[str]) -> list[asyncio.Task[None]]:
        loop = asyncio.get_running_loop()
        tasks: list[asyncio.Task[None]] = []
        unknown: list[str] = []
        for code in codes:
            try:
                capability = self.registry.resolve(code)
            except UnknownSourceError as exc:
                logger.error("Cannot fetch %s: %s", code, exc)
                unknown.append(str(exc))
                continue
            generation = self._generation.get(code, 0) + 1
            self._generation[code] = generation
            task = loop.create_task(
                self._run_source(code, capability, generation), name=f"fetch-{code}"
            )
            self._in_flight[code] = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        if unknown:
            self._error = "; ".join(unknown)
        return tasks

    def _request_for(self, code: str) -> FetchRequest:
        selection = self._selection
        return FetchRequest(
            source=code,
            pollutant=selection.pollutant,
            time_step=selection.time_step,
            sources=tuple(s for s in selection.sources if canonical_source(s) == code),
            aux_filters=selection.filters_for(code),
        )

    async def _run_source(self, code: str, capability: SourceCapability, generation: int) -> None:
        request = self._request_for(code)
        try:
            raws = await asyncio.wait_for(capability.fetch(request), timeout=self.source_timeout)
        except TimeoutError:
            self._complete(code, generation, error=SourceTimeoutError(code, self.source_timeout))
        except Exception as exc:  # noqa: BLE001
            self._complete(code, generation, error=exc)
        else:
            self._complete(code, generation, raws=raws)

    def _is_current(self, code: str, generation: int) -> bool:
        return (
            code in self._in_flight
            and self._generation.get(code) == generation
            and code in self._selection.canonical_sources
        )

    def _complete(
        self,
        code: str,
        generation: int,
        raws: list[RawRecord] | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Merge one source's outcome, unless a newer request superseded it."""
        if not self._is_current(code, generation):
            logger.debug("Discarding stale result for %s (request %d)", code, generation)
            return
        del self._in_flight[code]

        if error is not None:
            message = str(error) or type(error).__name__
            logger.warning("Source %s failed, keeping previous data: %s", code, message)
            self._source_errors[code] = message
        else:
            measurements, reports = partition_records(raws or [], code)
            self._measurements[code] = measurements
            self._reports[code] = self._filter_reports(code, reports)
            self._source_errors.pop(code, None)
            logger.info(
                "%s: %d measurements, %d reports", code, len(measurements), len(self._reports[code])
            )
        if not self._in_flight:
            self._last_refresh = datetime.now(UTC)
        self._publish()

    def _filter_reports(self, code: str, reports: list[CommunityReport]) -> list[CommunityReport]:
        wanted = self._selection.filters_for(code).signal_types
        if not wanted:
            return reports
        return [report for report in reports if report.signal_type in wanted]

    # ------------------------------------------------------------------
    # Auto-refresh timer
    # ------------------------------------------------------------------

    def _refresh_period(self, time_step: str) -> float:
        if time_step in self._refresh_periods:
            return self._refresh_periods[time_step]
        return refresh_period(time_step)

    def _sync_timer(self) -> None:
        """Restart the timer only when its time step or enabled state changed."""
        selection = self._selection
        key = (
            selection.time_step if selection.auto_refresh and selection.canonical_sources else None
        )
        if key == self._timer_key:
            return
        self._cancel_timer()
        self._timer_key = key
        if key is not None:
            self._schedule_timer()

    def _schedule_timer(self) -> None:
        if self._timer_key is None:
            return
        period = self._refresh_period(self._timer_key)
        self._timer = asyncio.get_running_loop().call_later(period, self._on_timer)
        logger.debug("Auto-refresh every %gs (%s)", period, self._timer_key)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        logger.debug("Auto-refresh tick")
        self.begin_cycle()
        self._schedule_timer()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(self) -> None:
        order = self._selection.canonical_sources
        self._snapshot = OrchestratorSnapshot(
            measurements=tuple(m for code in order for m in self._measurements.get(code, ())),
            reports=tuple(r for code in order for r in self._reports.get(code, ())),
            loading=bool(self._in_flight),
            error=self._error,
            in_flight=frozenset(self._in_flight),
            last_refresh=self._last_refresh,
            source_errors=dict(self._source_errors),
        )
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)
