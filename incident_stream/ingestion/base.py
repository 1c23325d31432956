"""Abstract remote incident source and the outcome of one fetch."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from incident_stream.ingestion.watermark import max_record_timestamp
from incident_stream.schemas.incident import IncidentRecord

PAGE_CEILING = 100


class OutcomeKind(str, Enum):
    DELIVERED = "delivered"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchOutcome:
    """Tagged result of one upstream call; consumed once by the engine."""

    kind: OutcomeKind
    records: List[IncidentRecord] = field(default_factory=list)
    max_record_timestamp: Optional[datetime] = None
    reason: Optional[str] = None

    @classmethod
    def delivered(cls, records: List[IncidentRecord]) -> "FetchOutcome":
        if not records:
            return cls.empty()
        return cls(
            kind=OutcomeKind.DELIVERED,
            records=list(records),
            max_record_timestamp=max_record_timestamp(records),
        )

    @classmethod
    def empty(cls) -> "FetchOutcome":
        return cls(kind=OutcomeKind.EMPTY)

    @classmethod
    def failed(cls, reason: str) -> "FetchOutcome":
        return cls(kind=OutcomeKind.FAILED, reason=reason)

    @property
    def is_failed(self) -> bool:
        return self.kind is OutcomeKind.FAILED


class RemoteIncidentSource(ABC):
    """Abstract base class for incident sources.

    ``fetch`` must cap ``page_size`` at ``PAGE_CEILING``, treat ``since`` as
    inclusive, and report transport or HTTP failures as
    ``FetchOutcome.failed`` instead of raising.
    """

    name: str
    tenant_id: Optional[str] = None

    @abstractmethod
    async def fetch(self, page_size: int, since: datetime) -> FetchOutcome:
        """Fetch up to ``page_size`` incidents with lastUpdateTime >= ``since``."""

    async def aclose(self) -> None:
        """Release transport resources. Default: nothing to release."""

    @staticmethod
    def clamp_page_size(page_size: int) -> int:
        return max(1, min(int(page_size), PAGE_CEILING))
