"""Health routes - liveness and per-pipeline state."""

from fastapi import APIRouter, Depends

from incident_stream.api.deps import get_pipelines
from incident_stream.schemas.api import HealthResponse
from incident_stream.services.stream import PipelineRegistry

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(pipelines: PipelineRegistry = Depends(get_pipelines)):
    """
    Health check endpoint for load balancer and container health checks.

    Lists every running pipeline with its engine state
    (idle, fetching, waiting or drained).
    """
    return HealthResponse(
        status="ok",
        pipelines={stream.pipeline_id: stream.engine.state.value for stream in pipelines.all()},
    )
