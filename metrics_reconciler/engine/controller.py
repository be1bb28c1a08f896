"""Reconciliation controller.

The controller merges the historical snapshot, the daily-aggregate series,
and the live push stream into one canonical series for the presentation
layer, honoring the active :class:`FilterState`.

Concurrency model
-----------------
Everything that can change controller state (push events, filter and refresh
commands, fetch completions, debounce expiry, connectivity changes) is posted
as an event onto one ``asyncio.Queue``. A single dispatch task drains the
queue and is the only writer of controller state, so handlers never
interleave. Fetches run as separate tasks and report back through the same
queue, tagged with the generation number they were issued under; a
completion whose generation is no longer the latest for its stream is
discarded.

Modes
-----
- LIVE (no time window): canonical = merge(historical snapshot, live buffer).
- WINDOWED (both dates set): canonical = daily aggregates only. Push events
  never reach the chart in this mode, even when their timestamp falls inside
  the window; they still update the latest-values list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from pydantic import ValidationError

from ..adapters import (
    AggregateSource,
    HistoricalSource,
    PushChannel,
    SummarySource,
    collect_historical,
)
from ..config.models import ReconcilerConfig
from ..domain.models import (
    FilterState,
    MetricRecord,
    MetricsSummary,
    ReconcileMode,
    Series,
    TypeGroups,
)
from ..domain.utils.timestamps import day_bounds
from ..errors import ErrorInfo, to_error_info
from ..utils.correlation import set_fetch_id
from .aggregates import aggregates_to_series
from .buffer import LiveBuffer
from .grouping import group_by_type
from .merge import merge_series

logger = logging.getLogger(__name__)

CHART = "chart"
SUMMARY = "summary"


@dataclass(frozen=True)
class Snapshot:
    """Read-only view handed to the presentation layer after each change."""

    canonical_series: Series
    type_groups: TypeGroups
    latest_values: Series
    summary: Optional[MetricsSummary]
    connected: bool
    last_error: Optional[ErrorInfo]
    mode: ReconcileMode
    filter_state: FilterState


Listener = Callable[[Snapshot], None]


# ---------------- Events ----------------


@dataclass(frozen=True)
class _SetFilter:
    filter_state: FilterState


@dataclass(frozen=True)
class _Refresh:
    reason: str = "manual"


@dataclass(frozen=True)
class _MetricPushed:
    raw: Any


@dataclass(frozen=True)
class _InvalidateSignal:
    pass


@dataclass(frozen=True)
class _InvalidateElapsed:
    pass


@dataclass(frozen=True)
class _ConnectivityChanged:
    connected: bool


@dataclass(frozen=True)
class _ChartFetched:
    generation: int
    mode: ReconcileMode
    records: Series


@dataclass(frozen=True)
class _SummaryFetched:
    generation: int
    summary: MetricsSummary


@dataclass(frozen=True)
class _FetchFailed:
    generation: int
    stream: str
    error: ErrorInfo


@dataclass
class _Generations:
    """Monotonic counters per fetch stream; only the latest issue is applied."""

    by_stream: Dict[str, int] = field(default_factory=dict)

    def bump(self, stream: str) -> int:
        value = self.by_stream.get(stream, 0) + 1
        self.by_stream[stream] = value
        return value

    def current(self, stream: str) -> int:
        return self.by_stream.get(stream, 0)


class ReconciliationController:  # pylint: disable=too-many-instance-attributes
    """Single-writer state machine producing the canonical series.

    Parameters
    ----------
    historical: HistoricalSource
        Paged bulk read used in LIVE mode.
    aggregates: AggregateSource
        Daily-aggregate range read used in WINDOWED mode.
    channel: PushChannel
        Live push channel delivering metrics and invalidation signals.
    summary: Optional[SummarySource]
        Optional per-type count provider.
    config: Optional[ReconcilerConfig]
        Tuning knobs; defaults apply when omitted.
    initial_filter: Optional[FilterState]
        Filter active at start (unfiltered by default).
    """

    def __init__(
        self,
        historical: HistoricalSource,
        aggregates: AggregateSource,
        channel: PushChannel,
        summary: Optional[SummarySource] = None,
        *,
        config: Optional[ReconcilerConfig] = None,
        initial_filter: Optional[FilterState] = None,
    ) -> None:
        self._historical = historical
        self._aggregates = aggregates
        self._channel = channel
        self._summary_source = summary
        self._config = config or ReconcilerConfig()

        self._filter = initial_filter or FilterState()
        self._mode = ReconcileMode.for_filter(self._filter)
        self._buffer = LiveBuffer(self._config.buffer_capacity)
        self._historical_snapshot: Series = ()
        self._aggregate_series: Series = ()
        self._canonical: Series = ()
        self._groups: TypeGroups = {}
        self._latest: Series = ()
        self._summary: Optional[MetricsSummary] = None
        self._connected = False
        self._last_error: Optional[ErrorInfo] = None

        self._generations = _Generations()
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._loop_task: Optional["asyncio.Task[None]"] = None
        self._fetch_tasks: Set["asyncio.Task[None]"] = set()
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []
        self._running = False

        self._handlers: Dict[type, Callable[[Any], None]] = {
            _SetFilter: self._handle_set_filter,
            _Refresh: self._handle_refresh,
            _MetricPushed: self._handle_metric,
            _InvalidateSignal: self._handle_invalidate_signal,
            _InvalidateElapsed: self._handle_invalidate_elapsed,
            _ConnectivityChanged: self._handle_connectivity,
            _ChartFetched: self._handle_chart_fetched,
            _SummaryFetched: self._handle_summary_fetched,
            _FetchFailed: self._handle_fetch_failed,
        }

    # ---------------- Published outputs ----------------

    @property
    def canonical_series(self) -> Series:
        return self._canonical

    @property
    def type_groups(self) -> TypeGroups:
        # Fresh dict per read; the tuples inside are immutable
        return dict(self._groups)

    @property
    def latest_values(self) -> Series:
        return self._latest

    @property
    def summary(self) -> Optional[MetricsSummary]:
        return self._summary

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_error(self) -> Optional[ErrorInfo]:
        return self._last_error

    @property
    def mode(self) -> ReconcileMode:
        return self._mode

    @property
    def filter_state(self) -> FilterState:
        return self._filter

    @property
    def buffered(self) -> Series:
        """Live buffer contents in arrival order."""
        return self._buffer.values()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def config(self) -> ReconcilerConfig:
        return self._config

    def snapshot(self) -> Snapshot:
        return Snapshot(
            canonical_series=self._canonical,
            type_groups=dict(self._groups),
            latest_values=self._latest,
            summary=self._summary,
            connected=self._connected,
            last_error=self._last_error,
            mode=self._mode,
            filter_state=self._filter,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a :class:`Snapshot` after every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---------------- Commands ----------------

    def set_filter(self, filter_state: FilterState) -> None:
        """Apply a new filter. Effects are observed through the outputs."""
        self._post(_SetFilter(filter_state))

    def refresh(self) -> None:
        """Clear the live buffer and refetch the current mode's data."""
        self._post(_Refresh())

    # ---------------- Lifecycle ----------------

    async def start(self) -> None:
        """Subscribe to the push channel and issue the initial fetches.

        Idempotent. A failing ``channel.start()`` only leaves connectivity
        False; fetched data is still reconciled.
        """
        if self._running:
            logger.debug("controller.start no-op: already running")
            return
        self._running = True
        self._channel.on_metric(self._on_push_metric)
        self._channel.on_invalidate(self._on_push_invalidate)
        self._channel.on_connectivity(self._on_push_connectivity)
        self._loop_task = asyncio.create_task(
            self._dispatch_loop(), name="reconciliation-dispatch"
        )
        self._post(_Refresh(reason="start"))
        logger.info(
            "controller.started",
            extra={"mode": self._mode.value, "capacity": self._buffer.capacity},
        )
        try:
            await self._channel.start()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("controller.push.start_failed", extra={"error": str(exc)})
            self._post(_ConnectivityChanged(False))

    async def stop(self) -> None:
        """Unsubscribe, stop the channel, and discard all in-flight work.

        Idempotent. No completion is applied after this returns.
        """
        if not self._running:
            logger.debug("controller.stop no-op: not running")
            return
        self._running = False
        for stream in (CHART, SUMMARY):
            self._generations.bump(stream)
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

        self._channel.on_metric(None)
        self._channel.on_invalidate(None)
        self._channel.on_connectivity(None)
        try:
            await self._channel.stop()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("controller.push.stop_failed", extra={"error": str(exc)})

        pending = list(self._fetch_tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        self._queue = asyncio.Queue()
        self._connected = False
        logger.info("controller.stopped")

    async def settle(self) -> None:
        """Wait until no fetch is in flight and every queued event is handled.

        Pending debounce timers are not awaited.
        """
        while True:
            if self._fetch_tasks:
                await asyncio.gather(*list(self._fetch_tasks), return_exceptions=True)
            if self._loop_task is not None:
                await self._queue.join()
            if not self._fetch_tasks and self._queue.empty():
                return
            await asyncio.sleep(0)

    # ---------------- Push channel callbacks ----------------

    def _on_push_metric(self, raw: object) -> None:
        self._post(_MetricPushed(raw))

    def _on_push_invalidate(self) -> None:
        self._post(_InvalidateSignal())

    def _on_push_connectivity(self, connected: bool) -> None:
        self._post(_ConnectivityChanged(connected))

    # ---------------- Dispatch ----------------

    def _post(self, event: object) -> None:
        if not self._running:
            logger.debug(
                "controller.event_ignored", extra={"event": type(event).__name__}
            )
            return
        self._queue.put_nowait(event)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._handlers[type(event)](event)
            except Exception:  # pylint: disable=broad-except
                # Keep the single writer alive; a failed handler leaves state as-is
                logger.exception(
                    "controller.event_failed", extra={"event": type(event).__name__}
                )
            finally:
                self._queue.task_done()

    # ---------------- Handlers ----------------

    def _handle_set_filter(self, event: _SetFilter) -> None:
        previous = self._filter
        self._filter = event.filter_state
        if previous.mode_changed(event.filter_state):
            self._mode = ReconcileMode.for_filter(event.filter_state)
            self._buffer.clear()
            # Previous mode's data must not stay on screen while the new fetch runs
            self._historical_snapshot = ()
            self._aggregate_series = ()
            logger.info(
                "controller.mode_changed",
                extra={"mode": self._mode.value, "buffer_cleared": True},
            )
            self._republish()
        else:
            logger.info(
                "controller.filter_changed",
                extra={"mode": self._mode.value, "filter": event.filter_state.model_dump()},
            )
        self._issue_chart_fetch()
        self._issue_summary_fetch()

    def _handle_refresh(self, event: _Refresh) -> None:
        self._buffer.clear()
        self._republish()
        logger.info(
            "controller.refresh",
            extra={"reason": event.reason, "mode": self._mode.value},
        )
        self._issue_chart_fetch()
        self._issue_summary_fetch()

    def _handle_metric(self, event: _MetricPushed) -> None:
        record = self._parse_push(event.raw)
        if record is None:
            return
        if record.is_sentinel:
            logger.debug("controller.push.sentinel_dropped")
            return
        if not self._filter.matches(record):
            return

        self._latest = self._with_latest(record)
        if self._mode is ReconcileMode.WINDOWED:
            logger.debug(
                "controller.push.windowed_dropped",
                extra={
                    "metric_id": record.id,
                    "in_window": self._filter.contains(record.created_at),
                },
            )
            self._notify()
            return

        self._buffer.add(record)
        self._republish()

    def _handle_invalidate_signal(self, _event: _InvalidateSignal) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
        delay = self._config.invalidate_debounce_ms / 1000.0
        self._debounce = asyncio.get_running_loop().call_later(
            delay, self._post, _InvalidateElapsed()
        )

    def _handle_invalidate_elapsed(self, _event: _InvalidateElapsed) -> None:
        self._debounce = None
        logger.debug("controller.invalidate", extra={"mode": self._mode.value})
        self._issue_summary_fetch()
        if self._mode is ReconcileMode.WINDOWED:
            self._issue_chart_fetch()

    def _handle_connectivity(self, event: _ConnectivityChanged) -> None:
        if event.connected == self._connected:
            return
        self._connected = event.connected
        self._notify()

    def _handle_chart_fetched(self, event: _ChartFetched) -> None:
        if self._is_stale(CHART, event.generation):
            return
        if event.mode is ReconcileMode.LIVE:
            self._historical_snapshot = event.records
            newest = sorted(event.records, key=lambda r: r.created_at, reverse=True)
            self._latest = tuple(newest[: self._config.latest_limit])
        else:
            self._aggregate_series = event.records
        self._last_error = None
        logger.info(
            "controller.fetch.applied",
            extra={
                "generation": event.generation,
                "mode": event.mode.value,
                "records": len(event.records),
            },
        )
        self._republish()

    def _handle_summary_fetched(self, event: _SummaryFetched) -> None:
        if self._is_stale(SUMMARY, event.generation):
            return
        self._summary = event.summary
        self._notify()

    def _handle_fetch_failed(self, event: _FetchFailed) -> None:
        if self._is_stale(event.stream, event.generation):
            return
        # Displayed data is left untouched
        self._last_error = event.error
        logger.warning(
            "controller.fetch.failed",
            extra={
                "stream": event.stream,
                "generation": event.generation,
                "code": event.error.code.value,
                "error": event.error.message,
            },
        )
        self._notify()

    # ---------------- Fetching ----------------

    def _is_stale(self, stream: str, generation: int) -> bool:
        current = self._generations.current(stream)
        if generation != current:
            logger.info(
                "controller.fetch.stale",
                extra={"stream": stream, "generation": generation, "current": current},
            )
            return True
        return False

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    def _issue_chart_fetch(self) -> None:
        generation = self._generations.bump(CHART)
        self._spawn(
            self._run_chart_fetch(generation, self._mode, self._filter),
            name=f"{self._mode.value}-fetch-{generation}",
        )

    def _issue_summary_fetch(self) -> None:
        if self._summary_source is None:
            return
        generation = self._generations.bump(SUMMARY)
        self._spawn(
            self._run_summary_fetch(generation, self._summary_source, self._filter),
            name=f"summary-fetch-{generation}",
        )

    async def _run_chart_fetch(
        self, generation: int, mode: ReconcileMode, filter_state: FilterState
    ) -> None:
        set_fetch_id(f"{mode.value}#{generation}")
        try:
            if mode is ReconcileMode.LIVE:
                items = await collect_historical(
                    self._historical,
                    filter_state.without_window(),
                    page_size=self._config.page_size,
                    max_items=self._config.historical_max_items,
                )
                records: Series = tuple(items)
            else:
                if filter_state.from_date is None or filter_state.to_date is None:
                    raise ValueError("windowed fetch requires both window bounds")
                start, end = day_bounds(filter_state.from_date, filter_state.to_date)
                rows = await self._aggregates.fetch_daily_aggregates(
                    start, end, filter_state.without_window()
                )
                records = aggregates_to_series(rows)
        except Exception as exc:  # pylint: disable=broad-except
            # Every fetch failure is surfaced, never raised
            source = "historical" if mode is ReconcileMode.LIVE else "aggregates"
            self._post(_FetchFailed(generation, CHART, to_error_info(exc, source)))
            return
        self._post(_ChartFetched(generation, mode, records))

    async def _run_summary_fetch(
        self, generation: int, source: SummarySource, filter_state: FilterState
    ) -> None:
        set_fetch_id(f"summary#{generation}")
        try:
            summary = await source.fetch_summary(
                filter_state.without_window()
            )
        except Exception as exc:  # pylint: disable=broad-except
            self._post(_FetchFailed(generation, SUMMARY, to_error_info(exc, "summary")))
            return
        self._post(_SummaryFetched(generation, summary))

    # ---------------- Publishing ----------------

    def _parse_push(self, raw: Any) -> Optional[MetricRecord]:
        if isinstance(raw, MetricRecord):
            return raw
        try:
            return MetricRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "controller.push.malformed",
                extra={"errors": exc.error_count(), "detail": str(exc)},
            )
            return None

    def _with_latest(self, record: MetricRecord) -> Series:
        rest = tuple(r for r in self._latest if r.id != record.id)
        return ((record,) + rest)[: self._config.latest_limit]

    def _republish(self) -> None:
        if self._mode is ReconcileMode.LIVE:
            live = tuple(r for r in self._buffer.values() if self._filter.matches(r))
            self._canonical = merge_series(self._historical_snapshot, live)
        else:
            self._canonical = self._aggregate_series
        self._groups = group_by_type(self._canonical)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:  # pylint: disable=broad-except
                logger.exception("controller.listener_failed")
