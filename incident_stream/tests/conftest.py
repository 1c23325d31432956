"""Shared fixtures: fake source, record factory, telemetry capture, loguru bridge."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from loguru import logger

from incident_stream.core import telemetry
from incident_stream.ingestion.base import FetchOutcome, RemoteIncidentSource
from incident_stream.schemas.incident import IncidentRecord

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

CLIENT_CONFIG = {
    "tenant_id": "this-is-my-tenant-id",
    "client_id": "this-is-my-client-id",
    "client_secret": "this-is-my-client-secret",
}


def build_record(
    incident_id: int,
    last_update_time: Optional[str] = None,
    *,
    pipeline_id: str = "test-pipeline",
    tenant_id: str = "this-is-my-tenant-id",
) -> IncidentRecord:
    payload: Dict[str, Any] = {"incidentId": incident_id, "incidentName": f"Incident {incident_id}"}
    if last_update_time is not None:
        payload["lastUpdateTime"] = last_update_time
    return IncidentRecord.from_payload(payload, pipeline_id=pipeline_id, tenant_id=tenant_id)


class FakeSource(RemoteIncidentSource):
    """In-memory source: hands out queued records in order, page by page."""

    name = "fake"
    tenant_id = "this-is-my-tenant-id"

    def __init__(self, records: Optional[List[IncidentRecord]] = None):
        self.queue: List[IncidentRecord] = list(records or [])
        self.calls: List[tuple] = []
        self.fail_with: Optional[str] = None
        self.raise_with: Optional[Exception] = None
        self.closed = False

    def push(self, records: List[IncidentRecord]) -> None:
        self.queue.extend(records)

    async def fetch(self, page_size: int, since: datetime) -> FetchOutcome:
        self.calls.append((page_size, since))
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with is not None:
            return FetchOutcome.failed(self.fail_with)
        page, self.queue = self.queue[:page_size], self.queue[page_size:]
        return FetchOutcome.delivered(page)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def page_sizes(self) -> List[int]:
        return [size for size, _ in self.calls]


def stamped_records(count: int, *, start: int = 1) -> List[IncidentRecord]:
    """``count`` records with strictly increasing lastUpdateTime after T0."""
    return [
        build_record(i, f"2024-03-01T12:{i // 60:02d}:{i % 60:02d}Z")
        for i in range(start, start + count)
    ]


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def telemetry_events():
    """Collect every stream telemetry event emitted during the test."""
    events: List[tuple] = []

    def handler(name, measurements, metadata, _config):
        events.append((name, measurements, metadata))

    ids = []
    for event in (telemetry.START_EVENT, telemetry.STOP_EVENT, telemetry.EXCEPTION_EVENT, telemetry.ACK_EVENT):
        handler_id = f"test-{'.'.join(event)}"
        telemetry.attach(handler_id, event, handler)
        ids.append(handler_id)
    yield events
    for handler_id in ids:
        telemetry.detach(handler_id)


@pytest.fixture
def caplog(caplog):
    """Route loguru records into pytest's caplog."""
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)
