"""Demand-driven polling engine.

One engine per pipeline instance, driven from a single asyncio event loop.
Each event (demand increase, timer fire, fetch completion, drain) is handled
to completion before the next one, so the engine holds no locks. The only
suspension point is the awaited ``source.fetch`` call, and while it is
outstanding no second fetch is started.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from incident_stream.core import telemetry
from incident_stream.core.logging import get_logger
from incident_stream.ingestion.base import PAGE_CEILING, FetchOutcome, RemoteIncidentSource
from incident_stream.ingestion.scheduler import (
    DEFAULT_FETCH_INTERVAL_MS,
    next_delay,
    quota_min_interval,
)
from incident_stream.ingestion.watermark import WatermarkTracker, format_timestamp, max_record_timestamp
from incident_stream.schemas.incident import IncidentRecord

log = get_logger("ingestion.engine")

Emit = Callable[[List[IncidentRecord]], None]


class EngineState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    WAITING = "waiting"
    DRAINED = "drained"


@dataclass(frozen=True)
class PollTimer:
    """An armed wakeup. ``generation`` identifies it; stale fires are ignored."""

    generation: int
    delay_ms: int
    handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


@dataclass
class EngineStats:
    fetches: int = 0
    records_received: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_fetch_at: Optional[datetime] = None


class PollingEngine:
    """Reconciles downstream demand with the upstream page ceiling and call quota."""

    def __init__(
        self,
        source: RemoteIncidentSource,
        emit: Emit,
        *,
        pipeline_id: str,
        fetch_interval: int = DEFAULT_FETCH_INTERVAL_MS,
        from_timestamp: Optional[datetime] = None,
        max_page_size: int = PAGE_CEILING,
        quota_interval: Optional[int] = None,
        on_drained: Optional[Callable[[], None]] = None,
    ):
        if max_page_size < 1:
            raise ValueError("max_page_size must be at least 1")
        self.source = source
        self.pipeline_id = pipeline_id
        self.fetch_interval = fetch_interval
        self.max_page_size = min(max_page_size, PAGE_CEILING)
        self.quota_interval = quota_interval if quota_interval is not None else quota_min_interval()
        self.stats = EngineStats()

        self._emit = emit
        self._on_drained = on_drained
        self._drained_notified = False
        self._watermark = WatermarkTracker(from_timestamp)
        self._pending_demand = 0
        self._fetching = False
        self._drained = False
        self._timer: Optional[PollTimer] = None
        self._generation = 0
        self._timer_tasks: Set[asyncio.Task] = set()

        if fetch_interval < self.quota_interval:
            log.warning(
                f"Receive interval {fetch_interval}ms can potentially exceed the upstream quota. "
                f"Consider increasing it to no less than {self.quota_interval}ms."
            )
        log.info(
            f"Engine {pipeline_id} ready | watermark={format_timestamp(self.watermark)} "
            f"interval={fetch_interval}ms quota_interval={self.quota_interval}ms"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    @property
    def state(self) -> EngineState:
        if self._drained:
            return EngineState.DRAINED
        if self._fetching:
            return EngineState.FETCHING
        if self._timer is not None:
            return EngineState.WAITING
        return EngineState.IDLE

    @property
    def in_flight(self) -> bool:
        return self._fetching

    @property
    def pending_demand(self) -> int:
        return self._pending_demand

    @property
    def watermark(self) -> datetime:
        return self._watermark.current

    @property
    def timer(self) -> Optional[PollTimer]:
        return self._timer

    def snapshot(self) -> Dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "state": self.state.value,
            "pending_demand": self._pending_demand,
            "watermark": self.watermark,
            "timer_delay_ms": self._timer.delay_ms if self._timer else None,
            "fetches": self.stats.fetches,
            "records_received": self.stats.records_received,
            "failures": self.stats.failures,
            "last_error": self.stats.last_error,
            "last_fetch_at": self.stats.last_fetch_at,
        }

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------
    async def increase_demand(self, n: int) -> None:
        """Add ``n`` to pending demand; fetch right away if the engine is idle."""
        if n < 0:
            raise ValueError(f"demand must be non-negative, got {n}")
        self._pending_demand += n
        if self._drained:
            log.debug(f"Engine {self.pipeline_id} is drained; ignoring demand of {n}")
            return
        if self.state is EngineState.IDLE:
            await self.attempt_fetch()

    async def timer_fired(self, generation: int) -> None:
        if self._drained or self._timer is None or self._timer.generation != generation:
            return
        self._timer = None
        if self._pending_demand > 0:
            await self.attempt_fetch()

    def drain(self) -> None:
        """Cancel any armed timer and stop fetching for good.

        ``on_drained`` runs once no fetch is in flight, so it always follows
        the last emitted batch.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._drained:
            self._drained = True
            log.info(f"Engine {self.pipeline_id} drained | pending_demand={self._pending_demand}")
        if not self._fetching:
            self._notify_drained()

    async def attempt_fetch(self) -> None:
        if self._drained or self._fetching or self._timer is not None or self._pending_demand <= 0:
            return

        demand = self._pending_demand
        page_size = min(demand, self.max_page_size)
        if demand > page_size:
            log.warning(
                f"Received demand of {demand} greater than the page ceiling of {page_size}. "
                f"Fetching {page_size} now; the remaining {demand - page_size} follow "
                f"in {self.quota_interval}ms or later."
            )

        since = self._watermark.current
        log.debug(f"Fetching up to {page_size} incidents since {format_timestamp(since)}")
        self._fetching = True
        try:
            outcome = await self._fetch(page_size, since, demand)
        finally:
            self._fetching = False
        self._complete(outcome)
        if self._drained:
            self._notify_drained()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _fetch(self, page_size: int, since: datetime, demand: int) -> FetchOutcome:
        metadata = {"tenant_id": self.source.tenant_id, "pipeline_id": self.pipeline_id, "demand": demand}
        self.stats.fetches += 1
        self.stats.last_fetch_at = datetime.now(timezone.utc)
        try:
            with telemetry.span(telemetry.PREFIX, metadata) as extra:
                outcome = await self.source.fetch(page_size, since)
                extra["received"] = len(outcome.records)
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Source {self.source.name} raised while fetching: {exc}")
            return FetchOutcome.failed(f"{type(exc).__name__}: {exc}")
        return outcome

    def _complete(self, outcome: FetchOutcome) -> None:
        records = outcome.records
        if outcome.is_failed:
            self.stats.failures += 1
            self.stats.last_error = outcome.reason
            log.error(
                f"Fetch failed for {self.pipeline_id}: {outcome.reason}; "
                f"retrying in {self.fetch_interval}ms"
            )
        elif records:
            candidate = outcome.max_record_timestamp or max_record_timestamp(records)
            self._watermark.advance(candidate)

        self.stats.records_received += len(records)
        self._pending_demand = max(0, self._pending_demand - len(records))
        delay = next_delay(outcome, self._pending_demand, self.fetch_interval, self.quota_interval)
        if delay is not None and not self._drained:
            self._arm(delay)

        next_in = f"{delay}ms" if delay is not None else "on demand"
        log.info(
            f"Fetched {len(records)} incidents for {self.pipeline_id} | "
            f"pending_demand={self._pending_demand} watermark={format_timestamp(self.watermark)} "
            f"next_in={next_in}"
        )
        if records:
            self._emit(list(records))

    def _notify_drained(self) -> None:
        if self._on_drained is not None and not self._drained_notified:
            self._drained_notified = True
            self._on_drained()

    def _arm(self, delay_ms: int) -> None:
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay_ms / 1000, self._on_timer, generation)
        self._timer = PollTimer(generation=generation, delay_ms=delay_ms, handle=handle)

    def _on_timer(self, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self.timer_fired(generation))
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_task_done)

    def _timer_task_done(self, task: asyncio.Task) -> None:
        self._timer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.opt(exception=task.exception()).error(f"Timer handling failed for {self.pipeline_id}")
