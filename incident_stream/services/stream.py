"""Downstream pull interface: demand in, incident batches out."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from incident_stream.core.config import PipelineOptions
from incident_stream.core.logging import get_logger
from incident_stream.ingestion.base import RemoteIncidentSource
from incident_stream.ingestion.defender_source import DefenderIncidentSource, TokenProvider
from incident_stream.ingestion.engine import PollingEngine
from incident_stream.schemas.incident import AckPolicy, IncidentRecord
from incident_stream.services.ack_service import AckPolicyRegistry, AcknowledgmentDispatcher

log = get_logger("stream")

_DRAINED = object()


class IncidentStream:
    """Credit-based incident stream for one pipeline.

    Usage:
        stream = build_pipeline(options)
        await stream.demand(10)
        async for batch in stream:
            ...
            stream.settle(successful=batch)
            await stream.demand(len(batch))
    """

    def __init__(
        self,
        source: RemoteIncidentSource,
        options: PipelineOptions,
        dispatcher: AcknowledgmentDispatcher,
    ):
        self.pipeline_id = options.pipeline_id
        self.source = source
        self.dispatcher = dispatcher
        self._batches: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.engine = PollingEngine(
            source,
            self._enqueue,
            pipeline_id=options.pipeline_id,
            fetch_interval=options.receive_interval,
            from_timestamp=options.from_timestamp,
            on_drained=self._end_of_stream,
        )

    async def demand(self, n: int) -> None:
        await self.engine.increase_demand(n)

    def drain(self) -> None:
        """Stop fetching. Iteration ends after any batch still in flight."""
        self.engine.drain()

    def settle(
        self,
        successful: Iterable[IncidentRecord] = (),
        failed: Iterable[IncidentRecord] = (),
    ) -> List[IncidentRecord]:
        return self.dispatcher.settle(self.pipeline_id, successful, failed)

    async def aclose(self) -> None:
        self.drain()
        await self.source.aclose()

    def _enqueue(self, records: List[IncidentRecord]) -> None:
        self._batches.put_nowait(records)

    def _end_of_stream(self) -> None:
        self._batches.put_nowait(_DRAINED)

    def __aiter__(self) -> "IncidentStream":
        return self

    async def __anext__(self) -> List[IncidentRecord]:
        if self._closed:
            raise StopAsyncIteration
        batch = await self._batches.get()
        if batch is _DRAINED:
            self._closed = True
            raise StopAsyncIteration
        return batch


class PipelineRegistry:
    """Running streams by pipeline id, for the operational API."""

    def __init__(self) -> None:
        self._streams: Dict[str, IncidentStream] = {}

    def add(self, stream: IncidentStream) -> None:
        if stream.pipeline_id in self._streams:
            raise ValueError(f"pipeline {stream.pipeline_id!r} already registered")
        self._streams[stream.pipeline_id] = stream

    def get(self, pipeline_id: str) -> Optional[IncidentStream]:
        return self._streams.get(pipeline_id)

    def all(self) -> List[IncidentStream]:
        return list(self._streams.values())


def build_pipeline(
    options: Union[PipelineOptions, Mapping[str, Any]],
    *,
    source: Optional[RemoteIncidentSource] = None,
    dispatcher: Optional[AcknowledgmentDispatcher] = None,
    registry: Optional[PipelineRegistry] = None,
    token_provider: Optional[TokenProvider] = None,
) -> IncidentStream:
    """Validate options, register the ack policy, and wire source -> engine -> stream.

    Raises ``ConfigurationError`` for invalid options; nothing is started then.
    """
    if not isinstance(options, PipelineOptions):
        options = PipelineOptions.from_mapping(options)

    dispatcher = dispatcher or AcknowledgmentDispatcher(AckPolicyRegistry())
    dispatcher.register_policy(
        options.pipeline_id,
        AckPolicy(
            on_success=options.on_success,
            on_failure=options.on_failure,
            tenant_id=options.config.tenant_id,
        ),
    )
    if source is None:
        source = DefenderIncidentSource(
            options.config,
            pipeline_id=options.pipeline_id,
            token_provider=token_provider,
        )

    stream = IncidentStream(source, options, dispatcher)
    if registry is not None:
        registry.add(stream)
    log.info(f"Pipeline {options.pipeline_id} built | source={source.name}")
    return stream


async def consume(
    stream: IncidentStream,
    handle: Callable[[IncidentRecord], Any],
    *,
    demand: int = 10,
) -> Dict[str, int]:
    """Pull batches until the stream drains, settling each record.

    A record whose handler raises is settled as failed; the rest as successful.
    Demand is replenished by the size of each handled batch.

    The upstream filter is inclusive (``lastUpdateTime ge watermark``), so while
    demand is outstanding on a quiet tenant the newest incident comes back on
    every quota tick. Handlers should deduplicate on ``record.receipt``.
    """
    counts = {"handled": 0, "failed": 0}
    await stream.demand(demand)
    async for batch in stream:
        successful: List[IncidentRecord] = []
        failed: List[IncidentRecord] = []
        for record in batch:
            try:
                handle(record)
            except Exception as exc:  # noqa: BLE001
                log.warning(f"Handler failed for incident {record.receipt}: {exc}")
                failed.append(record)
            else:
                successful.append(record)
        stream.settle(successful=successful, failed=failed)
        counts["handled"] += len(successful)
        counts["failed"] += len(failed)
        await stream.demand(len(batch))
    return counts
