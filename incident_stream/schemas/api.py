from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PipelineSnapshot(BaseModel):
    """Live engine state for one pipeline."""

    pipeline_id: str
    state: str
    pending_demand: int
    watermark: datetime
    timer_delay_ms: Optional[int] = None
    fetches: int
    records_received: int
    failures: int
    last_error: Optional[str] = None
    last_fetch_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str
    pipelines: dict[str, str]
